"""
Notificaciones de alerta del health check vía Telegram Bot API.
"""
from typing import Optional

import httpx
from loguru import logger


class AlertNotifier:
    """
    Cliente simple para enviar alertas vía Telegram Bot API.

    Un fallo al notificar se registra y retorna False; nunca cambia el
    resultado del health check.
    """

    def __init__(
        self,
        bot_token: str,
        chat_id: str,
        *,
        base_url: str = "https://api.telegram.org",
        timeout_s: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.base_url = f"{base_url.rstrip('/')}/bot{bot_token}"
        self._timeout_s = timeout_s
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.bot_token and self.chat_id)

    async def send_message(self, text: str) -> bool:
        """
        Envía un mensaje HTML al chat de alertas.

        Args:
            text: Contenido del mensaje.
        """
        if not self.configured:
            logger.warning("Telegram Bot Token o Chat ID no proporcionados. Saltando alerta.")
            return False

        url = f"{self.base_url}/sendMessage"
        payload = {
            "chat_id": self.chat_id,
            "text": text,
            "parse_mode": "HTML",
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout_s, transport=self._transport) as client:
                response = await client.post(url, json=payload)
                response.raise_for_status()
                return True
        except httpx.HTTPError as e:
            logger.error(f"Error al enviar alerta de Telegram: {e}")
            return False
