"""
Responder - Llama al LLM (Groq API) bajo un contrato de salida JSON.

Este módulo:
1. Integra con Groq API para generación estructurada (json_object)
2. Acota cada llamada con un timeout provisto por el llamador
3. No reintenta: cualquier falla se reporta como ProviderError
"""

import logging
from typing import Optional

from groq import APIError, BadRequestError, Groq

from support.errors import ProviderError, ProviderParseError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "llama-3.3-70b-versatile"


class GroqResponder:
    """Genera respuestas JSON usando Groq LLM API"""

    def __init__(
        self,
        api_key: str = None,
        model: str = None,
        temperature: float = 0.3,
        timeout: float = 15.0,
    ):
        """
        Inicializa el responder con Groq client.

        Args:
            api_key: API key de Groq (requerida)
            model: Modelo a usar (default: llama-3.3-70b-versatile)
            temperature: Temperatura de muestreo
            timeout: Timeout por defecto de cada llamada, en segundos
        """
        if not api_key:
            raise ValueError(
                "GROQ_API_KEY no encontrada. "
                "Crea un archivo .env con tu API key de https://console.groq.com/keys"
            )

        # Sin reintentos automáticos: la política de retry es del llamador
        self.client = Groq(api_key=api_key, max_retries=0, timeout=timeout)
        self.model = model or DEFAULT_MODEL
        self.temperature = temperature
        self.timeout = timeout

        logger.info(f"Groq Responder inicializado (modelo: {self.model})")

    def complete_json(
        self, system_prompt: str, user_message: str, timeout: Optional[float] = None
    ) -> str:
        """
        Pide al LLM un objeto JSON y devuelve el contenido crudo.

        Raises:
            ProviderError: error de conexión, HTTP, timeout o respuesta vacía
            ProviderParseError: Groq rechazó la salida por no ser JSON
        """
        if timeout is not None and timeout <= 0:
            raise ProviderError("Sin tiempo restante para llamar al LLM")

        try:
            chat_completion = self.client.chat.completions.create(
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_message},
                ],
                model=self.model,
                temperature=self.temperature,
                max_tokens=1024,
                response_format={"type": "json_object"},
                timeout=timeout if timeout is not None else self.timeout,
            )
        except BadRequestError as e:
            # Groq rechaza con 400 la generación que no valida como JSON
            if "json_validate_failed" in str(e):
                logger.warning(f"Groq generó JSON inválido: {e}")
                raise ProviderParseError(f"El LLM no generó JSON válido: {e}") from e
            logger.warning(f"Groq rechazó la request: {e}")
            raise ProviderError(f"Error al llamar al LLM: {e}") from e
        except APIError as e:
            logger.warning(f"Groq no disponible: {e}")
            raise ProviderError(f"Error al llamar al LLM: {e}") from e

        if not chat_completion.choices:
            raise ProviderError("El LLM devolvió una respuesta sin choices")

        content = chat_completion.choices[0].message.content
        if not content:
            raise ProviderError("El LLM devolvió una respuesta vacía")

        tokens = chat_completion.usage.total_tokens if chat_completion.usage else 0
        logger.info(
            f"LLM respondió ({tokens} tokens, "
            f"finish={chat_completion.choices[0].finish_reason})"
        )
        return content
