"""
Worker side of the engine bridge.

``run_worker`` is the process target. It owns a private event loop, a single
MarkovEngine built by ``engine_factory`` on the first ``initialize`` request,
and processes requests strictly one at a time:

    request:  {"type": "initialize"|"collect"|"generate"|"stats"|"shutdown", "options": {...}, "taskId": str}
    reply:    {"type": "result", "taskId": str, "data": ...}
              {"type": "error", "taskId": str, "error": str, "kind": str}
    progress: {"type": "progress", "event": str, "data": {...}}
"""

import asyncio
import logging

from .engine import TASK_TYPES, build_discord_engine
from .errors import EngineUnavailableError, ProtocolError, error_kind

MSG_READY = "ready"
MSG_INITIALIZE = "initialize"
MSG_SHUTDOWN = "shutdown"
MSG_RESULT = "result"
MSG_ERROR = "error"
MSG_PROGRESS = "progress"


def run_worker(requests, responses, engine_factory=build_discord_engine, log_level=logging.INFO):
    logging.basicConfig(level=log_level, handlers=[logging.StreamHandler()])
    asyncio.run(_serve(requests, responses, engine_factory))


async def _serve(requests, responses, engine_factory):
    engine = None

    def emit_progress(event, data):
        responses.put({"type": MSG_PROGRESS, "event": event, "data": data})

    responses.put({"type": MSG_READY})
    logging.info("Markov worker ready")
    try:
        while True:
            message = await asyncio.to_thread(requests.get)
            if not isinstance(message, dict):
                logging.warning(f"Markov worker ignored malformed message: {message!r}")
                continue

            task_type = message.get("type")
            task_id = message.get("taskId")
            try:
                if task_type == MSG_SHUTDOWN:
                    responses.put({"type": MSG_RESULT, "taskId": task_id, "data": "shutdown"})
                    break
                if task_type == MSG_INITIALIZE:
                    if engine is None:
                        credentials = (message.get("options") or {}).get("credentials")
                        engine = await engine_factory(credentials)
                        logging.info("Markov worker engine initialized")
                    result = "initialized"
                elif task_type in TASK_TYPES:
                    if engine is None:
                        raise EngineUnavailableError("Worker engine not initialized")
                    result = await engine.run_task(task_type, message.get("options"), progress=emit_progress)
                else:
                    raise ProtocolError(f"Unknown task type: {task_type}")
                responses.put({"type": MSG_RESULT, "taskId": task_id, "data": result})
            except Exception as e:
                logging.error(f"Error in worker task '{task_type}': {e}", exc_info=error_kind(e) == "internal")
                responses.put({"type": MSG_ERROR, "taskId": task_id, "error": str(e), "kind": error_kind(e)})
    finally:
        if engine is not None:
            await engine.close()
        logging.info("Markov worker stopped")
