"""
Faultline Response Synthesizer

Builds the payload a matched rule responds with:
- status >= 400: the rule's raw error body, or a generic HTTP error body
- otherwise: the business response envelope around the rule's result

Field omission, when enabled, runs on the finished body.
"""

import copy
import time
from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, Optional

from .field_omit import omit_fields
from .random_source import RandomSource, make_random_source
from .types import Rule

TIME_ZONE_ID = 'Asia/Shanghai'
TIME_ZONE_OFFSET = -480  # minutes, JavaScript getTimezoneOffset() convention

STATUS_TEXTS: Dict[int, str] = {
    200: 'OK',
    201: 'Created',
    204: 'No Content',
    400: 'Bad Request',
    401: 'Unauthorized',
    403: 'Forbidden',
    404: 'Not Found',
    409: 'Conflict',
    500: 'Internal Server Error',
    502: 'Bad Gateway',
    503: 'Service Unavailable',
}

ENVELOPE = 'envelope'
HTTP_ERROR = 'http_error'


def get_status_text(status: int) -> str:
    """Reason phrase for common status codes, 'Unknown' otherwise."""
    return STATUS_TEXTS.get(status, 'Unknown')


def generate_trace_id(rng: RandomSource) -> str:
    """Short hex identifier in brackets, e.g. ``[3fa9c01b2e]``."""
    return f"[{int(rng() * 16 ** 10):010x}]"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class ResponseEnvelope:
    """Success / business-error wrapper around a result payload."""

    err_no: int
    err_msg: str
    detail_err_msg: str
    result: Any
    sync: bool
    time_stamp: int
    time_zone_id: str
    time_zone_offset: int
    trace_id: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)


@dataclass
class SynthesizedResponse:
    """
    Response produced for a resolved request.

    ``kind`` tells the two body shapes apart: ``envelope`` for business
    responses, ``http_error`` for raw error bodies.
    """

    kind: str
    status: int
    body: Any

    @property
    def status_text(self) -> str:
        return get_status_text(self.status)


class ResponseSynthesizer:
    """
    Turns a matched rule into a response body.

    Example:
        synthesizer = ResponseSynthesizer()
        response = synthesizer.synthesize(rule)
        print(response.status, response.body['err_no'])
    """

    def __init__(
        self,
        rng: Optional[RandomSource] = None,
        clock: Optional[Callable[[], int]] = None
    ):
        """
        Initialize response synthesizer.

        Args:
            rng: Random source for trace ids and unseeded field omission
            clock: Returns the current time in milliseconds
        """
        self.rng = rng or make_random_source()
        self.clock = clock or _now_ms

    def build_envelope(self, rule: Rule) -> ResponseEnvelope:
        """Envelope carrying the rule's business fields and result."""
        response = rule.response
        return ResponseEnvelope(
            err_no=response.err_no,
            err_msg=response.err_msg,
            detail_err_msg=response.detail_err_msg,
            result=response.result,
            sync=True,
            time_stamp=self.clock(),
            time_zone_id=TIME_ZONE_ID,
            time_zone_offset=TIME_ZONE_OFFSET,
            trace_id=generate_trace_id(self.rng),
        )

    def build_error_body(self, rule: Rule) -> Any:
        """The rule's custom error body, or a generic one for its status."""
        if rule.response.error_body is not None:
            return copy.deepcopy(rule.response.error_body)
        status = rule.response.status
        return {'error': get_status_text(status), 'message': f"HTTP {status}"}

    def synthesize(self, rule: Rule) -> SynthesizedResponse:
        """
        Build the response for a rule.

        Args:
            rule: Matched rule

        Returns:
            SynthesizedResponse with status and (possibly corrupted) body
        """
        status = rule.response.status

        if status >= 400:
            kind = HTTP_ERROR
            body = self.build_error_body(rule)
        else:
            kind = ENVELOPE
            body = self.build_envelope(rule).to_dict()

        body = omit_fields(body, rule.field_omit, self.rng)
        return SynthesizedResponse(kind=kind, status=status, body=body)
