"""
Vision Service Client
=====================
Sends one page image at a time to an external vision model and returns
its free-text answer. The text is opaque here; the extraction module
parses it.

Every call carries a timeout. A timeout surfaces as ExternalServiceTimeout,
any other transport or HTTP failure as ExternalServiceError. The request
runs on a helper thread while the caller waits on an event, so cancel()
releases the caller immediately; it aborts one call and nothing else.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

import requests

from . import storage
from .config import PipelineConfig
from .errors import ExternalServiceError, ExternalServiceTimeout
from .extraction import NO_QUESTIONS_MARKER
from .models import ExtractionMode

logger = logging.getLogger(__name__)

API_VERSION = "2023-06-01"


def build_extraction_prompt(subject_name: Optional[str] = None) -> str:
    """Prompt for multiple-choice pages."""
    subject_info = (
        f"Esta es una página de examen de {subject_name}."
        if subject_name
        else "Esta es una página de examen universitario."
    )
    return f"""{subject_info}

Analiza la imagen y extrae TODAS las preguntas de tipo test que encuentres.

Para cada pregunta, usa el siguiente formato Markdown:

## Pregunta N

[Texto completo de la pregunta, incluyendo cualquier contexto o enunciado compartido]

a) [Opción A]
b) [Opción B]
c) [Opción C]
d) [Opción D]

---

INSTRUCCIONES IMPORTANTES:
1. Preserva el texto exactamente como aparece, incluyendo fórmulas, símbolos y notación matemática
2. Si hay tablas o diagramas, descríbelos en texto entre corchetes: [Tabla: descripción] o [Diagrama: descripción]
3. Si una pregunta está incompleta (cortada por el borde de la página), márcala con [INCOMPLETO] al final
4. Numera las preguntas secuencialmente empezando desde 1
5. Si hay un enunciado compartido para varias preguntas, inclúyelo en cada pregunta que lo use
6. Separa cada pregunta con una línea horizontal (---)
7. Si no hay preguntas de tipo test en la página, responde: {NO_QUESTIONS_MARKER}

FORMATO DE SALIDA: Solo devuelve el Markdown con las preguntas, sin explicaciones adicionales."""


def build_content_prompt(subject_name: Optional[str] = None) -> str:
    """Prompt for pages whose whole content is wanted (open questions)."""
    subject_info = (
        f"Esta es una página de un documento de {subject_name}."
        if subject_name
        else "Esta es una página de un documento universitario."
    )
    return f"""{subject_info}

Analiza la imagen y extrae TODO el contenido de texto que encuentres.

INSTRUCCIONES:
1. Extrae TODO el texto visible en la imagen, manteniendo la estructura
2. Si hay instrucciones o enunciados, inclúyelos completos
3. Si hay preguntas (abiertas, de desarrollo o de verificación), extráelas con su numeración
4. Preserva el texto exactamente como aparece
5. Si hay tablas, listas o diagramas, descríbelos lo mejor posible
6. Usa formato Markdown: ## para secciones y listas numeradas para preguntas

IMPORTANTE: Extrae TODO el contenido, no solo preguntas tipo test."""


class _PendingCall:
    """One HTTP request running on a helper thread."""

    def __init__(self, session: requests.Session):
        self.session = session
        self.done = threading.Event()
        self.cancelled = False
        self.response: Optional[requests.Response] = None
        self.error: Optional[Exception] = None


class VisionClient:
    """
    Blocking, timeout-bounded client for the page vision service.

    A client may serve several threads at once. Each call is tracked under
    the id of the thread that made it, so cancel(thread_id) aborts that
    one call and leaves the others running.
    """

    def __init__(
        self,
        api_url: str,
        model: str,
        api_key: str = "",
        timeout: float = 120.0,
        max_tokens: int = 4096,
    ):
        self.api_url = api_url
        self.model = model
        self.api_key = api_key
        self.timeout = timeout
        self.max_tokens = max_tokens
        self._lock = threading.Lock()
        self._calls: dict[int, _PendingCall] = {}

    @classmethod
    def from_config(cls, config: PipelineConfig) -> "VisionClient":
        return cls(
            api_url=config.vision_url,
            model=config.vision_model,
            api_key=config.vision_api_key,
            timeout=config.vision_timeout,
            max_tokens=config.vision_max_tokens,
        )

    def cancel(self, thread_id: int) -> bool:
        """
        Abort the call in flight on the given thread. The caller is released
        at once with ExternalServiceError. Returns False when that thread has
        no call running.
        """
        with self._lock:
            call = self._calls.get(thread_id)
            if call is None or call.done.is_set():
                return False
            call.cancelled = True
            call.done.set()
        logger.info(f"Vision call on thread {thread_id} cancelled")
        return True

    def in_flight(self, thread_id: int) -> bool:
        with self._lock:
            return thread_id in self._calls

    def _send(self, call: _PendingCall, payload: dict, headers: dict):
        try:
            call.response = call.session.post(
                self.api_url, json=payload, headers=headers, timeout=self.timeout
            )
        except Exception as e:
            call.error = e
        finally:
            call.done.set()

    def extract_page(
        self,
        image_path: str,
        subject_name: Optional[str] = None,
        mode: ExtractionMode = ExtractionMode.TEST,
    ) -> str:
        """Send one page image and return the model's text answer."""
        prompt = (
            build_content_prompt(subject_name)
            if mode == ExtractionMode.CONTENT
            else build_extraction_prompt(subject_name)
        )
        payload = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": [{
                "role": "user",
                "content": [
                    {
                        "type": "image",
                        "source": {
                            "type": "base64",
                            "media_type": storage.get_image_media_type(image_path),
                            "data": storage.read_image_base64(image_path),
                        },
                    },
                    {"type": "text", "text": prompt},
                ],
            }],
        }
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": API_VERSION,
            "content-type": "application/json",
        }

        thread_id = threading.get_ident()
        call = _PendingCall(requests.Session())
        with self._lock:
            self._calls[thread_id] = call

        logger.info(f"Processing image with vision service: {image_path}")
        sender = threading.Thread(
            target=self._send,
            args=(call, payload, headers),
            daemon=True,
            name=f"vision-call-{thread_id}",
        )
        try:
            sender.start()
            call.done.wait()
        finally:
            with self._lock:
                self._calls.pop(thread_id, None)
            call.session.close()

        # A cancelled call is abandoned even if its answer already arrived
        if call.cancelled:
            raise ExternalServiceError("Vision call cancelled")
        if isinstance(call.error, requests.Timeout):
            logger.error(f"Vision call timed out after {self.timeout:g}s")
            raise ExternalServiceTimeout(self.timeout) from call.error
        if isinstance(call.error, requests.RequestException):
            raise ExternalServiceError(
                f"Vision request failed: {call.error}"
            ) from call.error
        if call.error is not None:
            raise call.error
        response = call.response

        if response.status_code >= 400:
            raise ExternalServiceError(
                f"Vision service returned {response.status_code}: "
                f"{response.text[:200]}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ExternalServiceError("Vision service returned invalid JSON") from e
        if not isinstance(data, dict):
            raise ExternalServiceError("Vision service returned an unexpected payload")

        text = "".join(
            block.get("text", "")
            for block in data.get("content") or []
            if isinstance(block, dict) and block.get("type") == "text"
        )
        logger.info(f"Vision response length: {len(text)}")
        return text
