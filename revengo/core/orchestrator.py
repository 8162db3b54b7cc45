"""
Analysis orchestrator: runs the extraction, vulnerability-scan and summary
tasks concurrently against one InsightCapability and aggregates whatever
succeeds.
"""

import asyncio
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from revengo.core.errors import (
    AnalysisCancelled,
    CapabilityError,
    TaskInvocationError,
    TaskTimeout,
)
from revengo.core.inspector import BinaryInspector, describe_file_type
from revengo.core.models import TASK_NAMES, AnalysisResult, FileInfo
from revengo.core.prompts import (
    build_extraction_prompt,
    build_summary_prompt,
    build_vulnerability_prompt,
    decode_sample,
)
from revengo.core.response_parser import parse_findings, parse_summary, parse_vulnerabilities
from revengo.models.base import InsightCapability
from revengo.utils.config import get_analysis_option
from revengo.utils.logger import RevEnGoLogger, get_logger

logger = get_logger(__name__)

# task name -> (prompt builder, response parser)
_TASKS: Dict[str, Tuple[Callable[..., str], Callable[[str], Any]]] = {
    "extraction": (build_extraction_prompt, parse_findings),
    "vulnerability_scan": (build_vulnerability_prompt, parse_vulnerabilities),
    "summary": (build_summary_prompt, parse_summary),
}


class AnalysisOrchestrator:
    """Fans one inspected file out to three concurrent analysis tasks.

    A failed, timed-out or unparseable task is logged and listed in
    ``AnalysisResult.failed_tasks``; its siblings are unaffected. Only
    inspection errors (AccessError, SizeLimitExceeded) and cancellation
    reach the caller.
    """

    def __init__(
        self,
        capability: InsightCapability,
        inspector: Optional[BinaryInspector] = None,
        task_timeout: Optional[float] = None,
        sample_size: Optional[int] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            capability: Backend every task calls
            inspector: BinaryInspector (default: configured one)
            task_timeout: Seconds each task may take (default: task_timeout_seconds)
            sample_size: Bytes of content included in prompts (default: content_sample_bytes)
        """
        self.capability = capability
        self.inspector = inspector or BinaryInspector()
        if task_timeout is None:
            task_timeout = get_analysis_option("task_timeout_seconds", 120)
        if sample_size is None:
            sample_size = get_analysis_option("content_sample_bytes", 1000)
        self.task_timeout = float(task_timeout)
        self.sample_size = int(sample_size)

        # at most one call in flight for capabilities that are not thread-safe
        self._call_lock = None if capability.thread_safe else threading.Lock()
        # tasks queue here before their timeout starts; bound to the running loop
        self._queue_lock: Optional[asyncio.Lock] = None
        self._queue_loop: Optional[asyncio.AbstractEventLoop] = None

        logger.info(
            f"Analysis orchestrator initialized | Capability: {capability.name} | "
            f"Timeout: {self.task_timeout:g}s | Serialised: {self._call_lock is not None}"
        )

    # ==================== CAPABILITY CALLS ====================

    def _generate(self, prompt: str, abandoned: threading.Event) -> Optional[str]:
        """Worker-thread side of a task; skips the call if the task was already given up."""
        if self._call_lock is None:
            return self.capability.generate(prompt)
        with self._call_lock:
            if abandoned.is_set():
                return None
            return self.capability.generate(prompt)

    def _get_queue_lock(self) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        if self._queue_lock is None or self._queue_loop is not loop:
            self._queue_lock = asyncio.Lock()
            self._queue_loop = loop
        return self._queue_lock

    async def _call_with_timeout(self, prompt: str, abandoned: threading.Event) -> Optional[str]:
        if self._call_lock is None:
            return await asyncio.wait_for(
                asyncio.to_thread(self._generate, prompt, abandoned), timeout=self.task_timeout
            )
        # the timeout covers the call itself, not the wait behind sibling tasks
        async with self._get_queue_lock():
            return await asyncio.wait_for(
                asyncio.to_thread(self._generate, prompt, abandoned), timeout=self.task_timeout
            )

    async def _run_task(self, task_name: str, prompt: str, parse: Callable[[str], Any]) -> Any:
        abandoned = threading.Event()
        try:
            response = await self._call_with_timeout(prompt, abandoned)
        except asyncio.TimeoutError as e:
            abandoned.set()
            raise TaskTimeout(f"{task_name} did not finish within {self.task_timeout:g}s") from e
        except asyncio.CancelledError:
            abandoned.set()
            raise
        except TaskInvocationError:
            raise
        except Exception as e:
            raise CapabilityError(f"{task_name}: {e}") from e

        return parse(response)

    # ==================== ANALYSIS ====================

    def _inspect(self, path: str) -> Tuple[FileInfo, bytes]:
        data = self.inspector.load(path)
        return self.inspector.inspect_bytes(path, data), data

    async def _gather(
        self,
        tasks: Dict[str, "asyncio.Task"],
        cancel_event: Optional[asyncio.Event],
    ) -> List[Any]:
        gathered = asyncio.gather(*tasks.values(), return_exceptions=True)
        waiter = asyncio.ensure_future(cancel_event.wait()) if cancel_event else None
        try:
            if waiter is None:
                return await gathered

            done, _ = await asyncio.wait({gathered, waiter}, return_when=asyncio.FIRST_COMPLETED)
            if gathered in done:
                return gathered.result()

            logger.warning("⚠️ Analysis cancelled by caller - cancelling all tasks")
            raise AnalysisCancelled("Analysis cancelled before all tasks finished")
        except BaseException:
            for task in tasks.values():
                task.cancel()
            gathered.cancel()
            raise
        finally:
            if waiter is not None:
                waiter.cancel()

    async def analyze(self, path: str, cancel_event: Optional[asyncio.Event] = None) -> AnalysisResult:
        """
        Inspect ``path`` and run all analysis tasks concurrently.

        Args:
            path: File to analyse
            cancel_event: Optional event; setting it cancels every task

        Returns:
            AnalysisResult with whatever the successful tasks produced

        Raises:
            AccessError: file missing or unreadable
            SizeLimitExceeded: file over the configured cap
            AnalysisCancelled: cancel_event was set before the tasks finished
        """
        _, result = await self.inspect_and_analyze(path, cancel_event)
        return result

    async def inspect_and_analyze(
        self,
        path: str,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Tuple[FileInfo, AnalysisResult]:
        """Same as analyze(), also returning the FileInfo the prompts were built from."""
        start_time = time.time()
        RevEnGoLogger.log_analysis_start(logger, path, {
            "capability": self.capability.name,
            "task_timeout": self.task_timeout,
            "sample_size": self.sample_size,
        })

        file_info, data = await asyncio.to_thread(self._inspect, path)
        file_type = describe_file_type(file_info, data)
        sample = decode_sample(data, self.sample_size)
        logger.info(
            f"Inspected {file_info.name}: {file_type} | Arch: {file_info.architecture} | "
            f"Sections: {len(file_info.sections)} | Imports: {len(file_info.imports)} | "
            f"Strings: {len(file_info.strings)}"
        )

        tasks = {}
        for task_name in TASK_NAMES:
            build_prompt, parse = _TASKS[task_name]
            prompt = build_prompt(file_type, sample, file_info)
            tasks[task_name] = asyncio.create_task(
                self._run_task(task_name, prompt, parse), name=f"revengo-{task_name}"
            )

        outcomes = dict(zip(tasks, await self._gather(tasks, cancel_event)))

        result = AnalysisResult(
            filename=file_info.name,
            file_type=file_type,
            file_size=file_info.size,
        )
        failed = []
        for task_name, outcome in outcomes.items():
            if isinstance(outcome, BaseException):
                failed.append(task_name)
                RevEnGoLogger.log_task_failure(logger, task_name, outcome)
                continue
            if task_name == "extraction":
                result.findings.extend(outcome)
            elif task_name == "vulnerability_scan":
                result.vulnerabilities.extend(outcome)
            else:
                result.summary = outcome
        result.failed_tasks = sorted(failed)

        if result.inconclusive:
            logger.warning(f"⚠️ All analysis tasks failed for {file_info.name} - result is inconclusive")

        RevEnGoLogger.log_analysis_complete(
            logger,
            path,
            time.time() - start_time,
            len(result.findings),
            len(result.vulnerabilities),
            len(result.failed_tasks),
        )
        return file_info, result

    def analyze_sync(self, path: str) -> AnalysisResult:
        """Blocking wrapper around analyze() for callers without an event loop."""
        return asyncio.run(self.analyze(path))
