import json
import os
import threading
from datetime import datetime
from pathlib import Path
from typing import Optional
from urllib import error, request

from errors import HttpError, MalformedResponse, ModelRequestError

DEFAULT_API_URL = "http://localhost:1234/v1/chat/completions"
DEFAULT_MODEL = "openai/gpt-oss-20b"
DEFAULT_SYSTEM_PROMPT = "Be a helpful assistant"
DEFAULT_TIMEOUT = 120.0
TEMPERATURE = 0.7
# -1 tells the server there is no completion length limit.
UNBOUNDED_MAX_TOKENS = -1

_PROMPT_LOG_PATH = Path("prompt.log")
_prompt_log_lock = threading.Lock()
_CONNECTION_LOG_PATH = Path("connection.log")
_connection_log_lock = threading.Lock()


def reset_prompt_log() -> None:
    with _prompt_log_lock:
        _PROMPT_LOG_PATH.write_text("", encoding="utf-8")


def reset_connection_log() -> None:
    with _connection_log_lock:
        _CONNECTION_LOG_PATH.write_text("", encoding="utf-8")


def _log_prompt_exchange(prompt: str, response_text: str | None, error_text: str | None) -> None:
    prompt_text = prompt.strip() or "<empty prompt>"
    prompt_timestamp = datetime.now().isoformat(timespec="seconds")
    with _prompt_log_lock:
        size = _PROMPT_LOG_PATH.stat().st_size if _PROMPT_LOG_PATH.exists() else 0
        with _PROMPT_LOG_PATH.open("a", encoding="utf-8") as log:
            if size:
                log.write("----\n")
            log.write(f"chat-tree [{prompt_timestamp}] Prompt:\n")
            log.write("------------------------------------------------------------\n")
            log.write(f"{prompt_text}\n")
            log.write("============================================================\n")
            response_timestamp = datetime.now().isoformat(timespec="seconds")
            log.write(f"{get_active_model()} [{response_timestamp}] Response:\n")
            log.write("------------------------------------------------------------\n")
            if error_text:
                log.write(f"<error> {error_text}\n")
            elif response_text:
                log.write(f"{response_text.strip()}\n")
            else:
                log.write("<empty>\n")
            log.write("============================================================\n")


def _log_connection_event(status: str, model: str, detail: str | None = None) -> None:
    timestamp = datetime.now().isoformat(timespec="seconds")
    message = detail.strip() if detail else ""
    line = f"{timestamp}\t{status.upper()}\t{model}"
    if message:
        line = f"{line}\t{message}"
    with _connection_log_lock:
        with _CONNECTION_LOG_PATH.open("a", encoding="utf-8") as log:
            log.write(line + "\n")


def get_api_url() -> str:
    return os.getenv("CHAT_TREE_API_URL", DEFAULT_API_URL)


def get_active_model() -> str:
    return os.getenv("CHAT_TREE_MODEL", DEFAULT_MODEL)


def get_system_prompt() -> str:
    return os.getenv("CHAT_TREE_SYSTEM_PROMPT", DEFAULT_SYSTEM_PROMPT)


def get_request_timeout() -> float:
    raw = os.getenv("CHAT_TREE_TIMEOUT")
    if not raw:
        return DEFAULT_TIMEOUT
    try:
        value = float(raw)
    except ValueError:
        return DEFAULT_TIMEOUT
    return value if value > 0 else DEFAULT_TIMEOUT


def build_request_body(message: str, model: str | None = None) -> dict:
    """Chat-completions body: fixed system preamble plus a single user turn."""
    return {
        "model": model or get_active_model(),
        "messages": [
            {"role": "system", "content": get_system_prompt()},
            {"role": "user", "content": message},
        ],
        "temperature": TEMPERATURE,
        "max_tokens": UNBOUNDED_MAX_TOKENS,
        "stream": False,
    }


def _post_chat_completion(body: dict, timeout: float) -> dict:
    headers = {"Content-Type": "application/json"}
    api_key = os.getenv("CHAT_TREE_API_KEY")
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"

    data = json.dumps(body, separators=(",", ":")).encode("utf-8")
    http_request = request.Request(
        get_api_url(),
        data=data,
        headers=headers,
        method="POST",
    )
    try:
        with request.urlopen(http_request, timeout=timeout) as response:
            status = getattr(response, "status", 200)
            if not 200 <= status < 300:
                raise HttpError(status)
            raw_body = response.read()
    except error.HTTPError as exc:
        raise HttpError(exc.code) from exc
    except (error.URLError, TimeoutError, OSError) as exc:
        raise ModelRequestError(f"connection failed: {exc}") from exc

    try:
        return json.loads(raw_body.decode("utf-8"))
    except UnicodeDecodeError as exc:
        raise MalformedResponse(f"response body is not UTF-8: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise MalformedResponse(f"invalid JSON: {exc}") from exc


def _extract_text(response: object) -> str:
    try:
        content = response["choices"][0]["message"]["content"]  # type: ignore[index]
    except (KeyError, IndexError, TypeError) as exc:
        raise MalformedResponse("response has no choices[0].message.content") from exc
    if not isinstance(content, str):
        raise MalformedResponse(f"message content is {type(content).__name__}, not text")
    return content


def request_completion(message: str, timeout: Optional[float] = None) -> str:
    """Send ``message`` as the single user turn and return the assistant text.

    Blocking; run it off the event loop. Raises ``HttpError`` for non-2xx
    statuses, ``MalformedResponse`` when the content field is missing and
    ``ModelRequestError`` for transport failures.
    """
    model = get_active_model()
    body = build_request_body(message, model)
    try:
        payload = _post_chat_completion(body, timeout or get_request_timeout())
        text = _extract_text(payload)
    except ModelRequestError as exc:
        _log_connection_event("FAIL", model, str(exc))
        _log_prompt_exchange(message, None, str(exc))
        raise
    _log_connection_event("SUCCESS", model)
    _log_prompt_exchange(message, text, None)
    return text
