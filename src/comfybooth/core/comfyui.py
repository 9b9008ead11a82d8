"""ComfyUI job submission and result polling.

This module is the only place ComfyBooth talks to the generation backend.
It provides three layers, each usable on its own:

- :class:`ComfyUIClient` wraps the four ComfyUI HTTP endpoints ComfyBooth
  needs (image upload, job submission, job history and output retrieval)
  and turns every upstream failure into a domain error.
- :class:`ResultPoller` is the polling state machine.  It repeatedly checks
  the job history until an output can be downloaded or the deadline passes.
- :func:`generate_cartoon` chains upload, submission and polling into the
  single call the HTTP handlers use.

Polling state machine
---------------------
::

    POLLING ──output downloaded──▶ FOUND      (returns the bytes)
       │
       └──elapsed >= timeout────▶ EXHAUSTED  (returns None)

Transient failures while polling (network errors, non-success status codes,
malformed history JSON, a failed output download) are logged and the loop
carries on.  Each check runs under the time left before the deadline, so the
timeout bounds the whole wait even when the server stalls.  Exhaustion is
reported as an explicit ``None`` rather than an exception, leaving it to the
caller to decide how to present a timeout.

The clock and sleep functions are injectable so tests can drive the loop
with a fake clock and never wait on wall time.

Usage
-----
::

    async with ComfyUIClient("http://127.0.0.1:8188") as client:
        job = await generate_cartoon(client, photo_bytes, Img2ImgWorkflow())
        png_bytes = job.result
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass, field
from enum import Enum

import httpx

from comfybooth.core.errors import GenerationTimeout, SubmissionError, UpstreamError
from comfybooth.core.workflow import Img2ImgWorkflow

logger = logging.getLogger(__name__)

DEFAULT_POLL_TIMEOUT = 180.0
DEFAULT_POLL_INTERVAL = 1.0

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


class JobStatus(str, Enum):
    """Lifecycle of a :class:`GenerationJob`."""

    SUBMITTED = "submitted"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class PollState(str, Enum):
    """States of the :class:`ResultPoller` state machine."""

    POLLING = "polling"
    FOUND = "found"
    EXHAUSTED = "exhausted"


@dataclass
class GenerationJob:
    """One image transformation request sent to ComfyUI.

    Attributes:
        payload: The job graph submitted to ``/prompt``.
        prompt_id: Opaque identifier issued by the service, ``None`` until
            submission succeeds.
        status: Current lifecycle state.
        result: Output image bytes once the poller finds them.
        attempts: Number of history checks performed so far.
    """

    payload: dict
    prompt_id: str | None = None
    status: JobStatus = JobStatus.SUBMITTED
    result: bytes | None = None
    attempts: int = 0


@dataclass(frozen=True)
class OutputReference:
    """Location of one output image as reported by the history endpoint."""

    filename: str
    subfolder: str = ""
    type: str = "output"

    def query_params(self) -> dict[str, str]:
        """Return the ``/view`` query parameters for this output."""
        return {
            "filename": self.filename,
            "subfolder": self.subfolder or "",
            "type": self.type or "output",
        }


def iter_output_references(history: dict, prompt_id: str) -> Iterator[OutputReference]:
    """Yield the first image of each output node of a job, in report order.

    Args:
        history: Decoded body of ``GET /history/{prompt_id}``.
        prompt_id: The job to look up in ``history``.

    Yields:
        One :class:`OutputReference` per output node that has images.
    """
    entry = history.get(prompt_id) if isinstance(history, dict) else None
    if not isinstance(entry, dict):
        return

    outputs = entry.get("outputs")
    if not isinstance(outputs, dict):
        return

    for node_output in outputs.values():
        images = node_output.get("images") if isinstance(node_output, dict) else None
        if not isinstance(images, list) or not images:
            continue
        image = images[0]
        if not isinstance(image, dict) or not image.get("filename"):
            continue
        yield OutputReference(
            filename=image["filename"],
            subfolder=image.get("subfolder") or "",
            type=image.get("type") or "output",
        )


class ComfyUIClient:
    """Async HTTP client for a single ComfyUI server.

    The client owns an :class:`httpx.AsyncClient`; use it as an async context
    manager or call :meth:`aclose` when done.

    Args:
        base_url: Server address, e.g. ``http://127.0.0.1:8188``.  A trailing
            slash is ignored.
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport, used by tests to fake the server.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url[:-1] if base_url.endswith("/") else base_url
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> ComfyUIClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    # -- Submission ---------------------------------------------------------

    async def upload_image(self, data: bytes, filename: str) -> str:
        """Upload an input image and return the name the server assigned.

        Raises:
            SubmissionError: On network failure, non-success status or a
                reply without a ``name``.
        """
        files = {"image": (filename, data, "image/png")}
        body = await self._submit("POST", "/upload/image", files=files)
        name = body.get("name") if isinstance(body, dict) else None
        if not name:
            raise SubmissionError("upload reply did not include an image name")
        return name

    async def queue_prompt(self, graph: dict) -> str:
        """Submit a job graph and return its ``prompt_id``.

        Raises:
            SubmissionError: On network failure, non-success status or a
                reply without a ``prompt_id``.
        """
        body = await self._submit("POST", "/prompt", json={"prompt": graph})
        prompt_id = body.get("prompt_id") if isinstance(body, dict) else None
        if not prompt_id:
            raise SubmissionError("prompt reply did not include a prompt_id")
        return str(prompt_id)

    async def _submit(self, method: str, path: str, **kwargs) -> dict:
        try:
            response = await self._http.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise SubmissionError(str(exc) or type(exc).__name__) from exc

        if not response.is_success:
            raise SubmissionError(response.reason_phrase, status_code=response.status_code)

        try:
            return response.json()
        except ValueError as exc:
            raise SubmissionError(f"invalid JSON from {path}") from exc

    # -- Results ------------------------------------------------------------

    async def fetch_history(self, prompt_id: str) -> dict:
        """Return the decoded history body for ``prompt_id``.

        Raises:
            UpstreamError: On network failure, non-success status or an
                undecodable body.
        """
        response = await self._get(f"/history/{prompt_id}")
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamError("invalid JSON from history endpoint") from exc

    async def fetch_output(self, ref: OutputReference) -> bytes:
        """Download the binary of one output image.

        Raises:
            UpstreamError: On network failure or non-success status.
        """
        response = await self._get("/view", params=ref.query_params())
        return response.content

    async def _get(self, path: str, **kwargs) -> httpx.Response:
        try:
            response = await self._http.get(path, **kwargs)
        except httpx.HTTPError as exc:
            raise UpstreamError(str(exc) or type(exc).__name__) from exc
        if not response.is_success:
            raise UpstreamError(response.reason_phrase, status_code=response.status_code)
        return response


class ResultPoller:
    """Poll a job's history until its output is available or time runs out.

    A poller instance handles one job at a time; :attr:`state` reflects the
    outcome of the most recent :meth:`wait` call.

    Args:
        client: Client used for history queries and output downloads.
        timeout: Maximum seconds to keep polling.
        interval: Fixed seconds between two checks.
        clock: Monotonic clock returning seconds.
        sleep: Awaitable sleep taking seconds.
    """

    def __init__(
        self,
        client: ComfyUIClient,
        *,
        timeout: float = DEFAULT_POLL_TIMEOUT,
        interval: float = DEFAULT_POLL_INTERVAL,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if timeout <= 0 or interval <= 0:
            raise ValueError("timeout and interval must be positive")
        self._client = client
        self.timeout = timeout
        self.interval = interval
        self._clock = clock
        self._sleep = sleep
        self.state = PollState.POLLING

    async def wait(self, job: GenerationJob) -> bytes | None:
        """Poll until ``job`` produces an output or the deadline passes.

        Args:
            job: A submitted job; ``job.prompt_id`` must be set.

        Returns:
            The output image bytes (``FOUND``), or ``None`` (``EXHAUSTED``).
        """
        if not job.prompt_id:
            raise ValueError("job has not been submitted")

        started = self._clock()
        self.state = PollState.POLLING
        job.status = JobStatus.POLLING

        while self._clock() - started < self.timeout:
            remaining = self.timeout - (self._clock() - started)
            job.attempts += 1
            try:
                payload = await asyncio.wait_for(self._tick(job.prompt_id), timeout=remaining)
            except asyncio.TimeoutError:
                logger.warning(f"Check {job.attempts} for {job.prompt_id} cut short by the deadline")
                break
            if payload is not None:
                self.state = PollState.FOUND
                job.status = JobStatus.COMPLETED
                job.result = payload
                logger.info(
                    f"Job {job.prompt_id} completed after {job.attempts} checks "
                    f"({self._clock() - started:.1f}s)"
                )
                return payload

            # Never sleep past the deadline.
            remaining = self.timeout - (self._clock() - started)
            if remaining <= 0:
                break
            await self._sleep(min(self.interval, remaining))

        self.state = PollState.EXHAUSTED
        job.status = JobStatus.TIMED_OUT
        logger.info(
            f"Job {job.prompt_id} produced no output within {self.timeout:.0f}s "
            f"({job.attempts} checks)"
        )
        return None

    async def _tick(self, prompt_id: str) -> bytes | None:
        try:
            history = await self._client.fetch_history(prompt_id)
        except UpstreamError as exc:
            logger.warning(f"History check for {prompt_id} failed: {exc.message}")
            return None

        for ref in iter_output_references(history, prompt_id):
            try:
                return await self._client.fetch_output(ref)
            except UpstreamError as exc:
                logger.warning(f"Fetching output {ref.filename} for {prompt_id} failed: {exc.message}")
        return None


async def generate_cartoon(
    client: ComfyUIClient,
    image: bytes,
    workflow: Img2ImgWorkflow,
    *,
    timeout: float = DEFAULT_POLL_TIMEOUT,
    interval: float = DEFAULT_POLL_INTERVAL,
    clock: Clock = time.monotonic,
    sleep: Sleep = asyncio.sleep,
) -> GenerationJob:
    """Upload a photo, submit the workflow and wait for the output.

    Args:
        client: Client bound to the target ComfyUI server.
        image: Input photo bytes.
        workflow: Validated workflow parameters.
        timeout: Maximum seconds to poll for the result.
        interval: Seconds between two history checks.
        clock: Clock passed to the :class:`ResultPoller`.
        sleep: Sleep passed to the :class:`ResultPoller`.

    Returns:
        The completed job; ``job.result`` holds the output bytes.

    Raises:
        SubmissionError: If the upload or the job submission failed.
        GenerationTimeout: If no output appeared within ``timeout``.
    """
    uploaded_name = await client.upload_image(image, f"input_{uuid.uuid4().hex}.png")

    job = GenerationJob(payload=workflow.build(uploaded_name))
    try:
        job.prompt_id = await client.queue_prompt(job.payload)
    except SubmissionError:
        job.status = JobStatus.FAILED
        raise
    logger.info(f"Queued job {job.prompt_id} (seed={workflow.seed})")

    poller = ResultPoller(client, timeout=timeout, interval=interval, clock=clock, sleep=sleep)
    if await poller.wait(job) is None:
        raise GenerationTimeout("generation timed out, please try again")
    return job
