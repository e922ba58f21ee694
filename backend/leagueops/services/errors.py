"""Domain errors raised by pipeline services.

Routers and main.py map these to `{ok: false, ...}` JSON responses using the
carried status code. Batch loops catch them per item instead.
"""


class PipelineError(RuntimeError):
    status_code = 500
    code = "pipeline_error"

    def to_payload(self) -> dict:
        return {"ok": False, "error": self.code, "message": str(self)}


class FixtureNotFoundError(PipelineError):
    status_code = 404
    code = "fixture_not_found"


class MatchPlanMissingError(PipelineError):
    status_code = 412
    code = "match_plan_missing"


class FixtureTerminalError(PipelineError):
    status_code = 409
    code = "fixture_terminal"


class StaleRequestTokenError(PipelineError):
    status_code = 409
    code = "stale_request_token"


class MalformedScoreError(PipelineError):
    status_code = 422
    code = "malformed_score"


class WorkerTriggerError(PipelineError):
    status_code = 502
    code = "worker_trigger_failed"


class StorageNotConfiguredError(PipelineError):
    status_code = 503
    code = "storage_not_configured"


class UnknownTaskKindError(PipelineError):
    status_code = 400
    code = "unknown_task_kind"
