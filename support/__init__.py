"""
Support — Núcleo de orquestación del asistente de soporte e-commerce.

Contiene:
- Ledger de órdenes (estado y reembolsos)
- Audit log append-only con enmascarado de PII
- Workflow de escalamiento con aprobación humana
- Orquestador conversacional (RAG + LLM + fallback determinístico)
- Métricas derivadas del audit log
"""
