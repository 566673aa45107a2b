"""
Errores del dominio de soporte.

Cada error lleva el status HTTP y el `type` que la API usa al construir
el ErrorResponse. El mensaje público es genérico; el detalle interno
solo se loguea.
"""


class SupportError(Exception):
    """Base de todos los errores del núcleo."""

    status_code: int = 500
    error_type: str = "internal_error"
    title: str = "Error Interno"
    public_message: str = "Error interno del servidor. Intenta nuevamente más tarde."

    def __init__(self, message: str = None):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message


class ValidationError(SupportError):
    """Input mal formado (acción desconocida, campos faltantes, etc.)."""

    status_code = 400
    error_type = "validation_error"
    title = "Datos de entrada inválidos"
    public_message = "The request is malformed."


class NotFound(SupportError):
    status_code = 404
    error_type = "not_found"
    title = "No Encontrado"
    public_message = "The requested resource was not found."


class OrderNotFound(NotFound):
    public_message = "Order not found."


class EscalationNotFound(NotFound):
    public_message = "Escalation not found."


class InvalidState(SupportError):
    """Violación de una regla de negocio (ej: cancelar una orden enviada)."""

    status_code = 409
    error_type = "invalid_state"
    title = "Estado inválido"
    public_message = "The requested operation is not allowed in the current state."


class AlreadyResolved(SupportError):
    """Segundo intento de resolver una escalación terminal."""

    status_code = 409
    error_type = "already_resolved"
    title = "Escalación ya resuelta"
    public_message = "This escalation has already been resolved."


class Unauthorized(SupportError):
    status_code = 401
    error_type = "unauthorized"
    title = "No autorizado"
    public_message = "Unauthorized."


class ProviderError(SupportError):
    """Falla del proveedor de embeddings o del LLM (incluye timeouts)."""

    status_code = 502
    error_type = "provider_error"
    title = "Proveedor no disponible"
    public_message = "The AI provider is unavailable."


class ProviderParseError(SupportError):
    """La salida del LLM no cumple el contrato estructurado."""

    status_code = 502
    error_type = "provider_parse_error"
    title = "Respuesta inválida del proveedor"
    public_message = "The AI provider returned an invalid response."


class PersistenceError(SupportError):
    status_code = 500
    error_type = "persistence_error"
    title = "Error de Persistencia"
    public_message = "Error interno del servidor. Intenta nuevamente más tarde."
