"""
Student-side session client.

Keeps one attempt alive the way the exam page does: polls the heartbeat so a
replaced session stops promptly, autosaves periodically and shortly after
each edit, counts the advisory countdown, and submits on its own when time
runs out or the violation threshold is reached. All background loops stop
on submission, on a kick, or on :meth:`ExamSessionClient.close`.
"""
import logging
import threading
import time
from typing import Callable, Dict, Optional

import httpx

from exam_session.core.config import settings

logger = logging.getLogger(__name__)


class ExamClientError(Exception):
    def __init__(self, status_code: int, code: str, message: str):
        self.status_code = status_code
        self.code = code
        self.message = message
        super().__init__(f"{status_code} {code}: {message}")


def _raise_for_error(response: httpx.Response) -> dict:
    if response.is_success:
        return response.json()
    try:
        error = response.json().get("error", {})
    except ValueError:
        error = {}
    raise ExamClientError(response.status_code, error.get("type", "http_error"), error.get("message", response.text))


class ExamSessionClient:
    def __init__(self, http: httpx.Client, exam_id: str, api_prefix: str = "/v1/student",
                 heartbeat_interval: float = settings.HEARTBEAT_INTERVAL_SECONDS,
                 autosave_interval: float = settings.AUTOSAVE_INTERVAL_SECONDS,
                 autosave_debounce: float = settings.AUTOSAVE_DEBOUNCE_SECONDS,
                 violation_debounce: float = settings.VIOLATION_DEBOUNCE_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self.http = http
        self.exam_id = exam_id
        self.api_prefix = api_prefix.rstrip("/")
        self.heartbeat_interval = heartbeat_interval
        self.autosave_interval = autosave_interval
        self.autosave_debounce = autosave_debounce
        self.violation_debounce = violation_debounce
        self.clock = clock

        self.attempt_id: Optional[str] = None
        self.session_token: Optional[str] = None
        self.questions: list = []
        self.answers: Dict[str, Optional[str]] = {}
        self.flags: Dict[str, bool] = {}
        self.elapsed_seconds = 0
        self.remaining_seconds: Optional[int] = None
        self.violation_count = 0
        self.max_violations = 0
        self.kicked = False
        self.submitted = False
        self.result: Optional[dict] = None

        self._lock = threading.RLock()
        self._dirty = False
        self._last_edit: Optional[float] = None
        self._last_violation: Dict[str, float] = {}
        self._stop = threading.Event()
        self._threads: list = []

    # ---------- lifecycle ----------

    @property
    def active(self) -> bool:
        return self.attempt_id is not None and not (self.kicked or self.submitted)

    def _url(self, path: str) -> str:
        return f"{self.api_prefix}{path}"

    def start(self) -> str:
        data = _raise_for_error(self.http.post(self._url(f"/exams/{self.exam_id}/attempt"), json={}))
        self.attempt_id = data["attemptId"]
        self.session_token = data["sessionToken"]
        self.kicked = False
        logger.info(f"Attempt {self.attempt_id} {'resumed' if data.get('resumed') else 'started'}")
        return self.attempt_id

    def load(self) -> dict:
        response = self.http.get(self._url(f"/attempts/{self.attempt_id}"), params={"sessionToken": self.session_token})
        try:
            data = _raise_for_error(response)
        except ExamClientError as e:
            if e.code == "attempt_expired":
                self._finish()
            elif e.code == "session_replaced":
                self._kick()
            raise
        with self._lock:
            self.questions = data["exam"]["questions"]
            self.max_violations = data["exam"]["maxViolations"]
            self.answers = {a["questionId"]: a["selectedOption"] for a in data["savedAnswers"]}
            self.flags = {a["questionId"]: a["isFlagged"] for a in data["savedAnswers"]}
            self.elapsed_seconds = data["elapsedSeconds"]
            self.remaining_seconds = data["remainingSeconds"]
            self.violation_count = data["violationCount"]
        return data

    # ---------- local edits ----------

    def select(self, question_id: str, option: Optional[str]) -> None:
        with self._lock:
            self.answers[question_id] = option
            self._touch()

    def flag(self, question_id: str, flagged: bool = True) -> None:
        with self._lock:
            self.flags[question_id] = flagged
            self._touch()

    def _touch(self) -> None:
        self._dirty = True
        self._last_edit = self.clock()

    def tick(self, seconds: int = 1) -> None:
        """Advance the advisory countdown; submits once it reaches zero."""
        if not self.active or self.remaining_seconds is None:
            return
        with self._lock:
            self.elapsed_seconds += seconds
            self.remaining_seconds = max(0, self.remaining_seconds - seconds)
            expired = self.remaining_seconds <= 0
        if expired:
            logger.info(f"Time is up for attempt {self.attempt_id}")
            self.submit("timer_expiry")

    # ---------- server calls ----------

    def heartbeat(self) -> Optional[dict]:
        if not self.active:
            return None
        try:
            response = self.http.post(self._url(f"/attempts/{self.attempt_id}/heartbeat"),
                                      json={"sessionToken": self.session_token})
            data = _raise_for_error(response)
        except (httpx.HTTPError, ExamClientError) as e:
            logger.warning(f"Heartbeat failed, will retry: {e}")
            return None
        if data.get("kicked"):
            self._kick()
        elif data.get("reason") == "already_submitted":
            self._finish()
        return data

    def autosave(self) -> bool:
        if not self.active:
            return False
        with self._lock:
            payload = {
                "sessionToken": self.session_token,
                "answers": dict(self.answers),
                "flags": dict(self.flags),
                "elapsedSeconds": self.elapsed_seconds,
            }
            self._dirty = False
        try:
            data = _raise_for_error(self.http.put(self._url(f"/attempts/{self.attempt_id}/progress"), json=payload))
        except ExamClientError as e:
            if e.code == "session_replaced":
                self._kick()
                return False
            with self._lock:
                self._dirty = True
            logger.warning(f"Autosave failed, will retry: {e}")
            return False
        except httpx.HTTPError as e:
            with self._lock:
                self._dirty = True
            logger.warning(f"Autosave failed, will retry: {e}")
            return False
        if not data.get("ok"):
            self._finish()
        return bool(data.get("ok"))

    def autosave_if_idle(self) -> bool:
        """Debounced save: only once the student has stopped editing for a moment."""
        with self._lock:
            due = self._dirty and self._last_edit is not None and self.clock() - self._last_edit >= self.autosave_debounce
        return self.autosave() if due else False

    def report_violation(self, violation_type: str) -> Optional[dict]:
        """Report a proctoring event; repeats of the same event inside the debounce window are dropped."""
        if not self.active:
            return None
        now = self.clock()
        last = self._last_violation.get(violation_type)
        if last is not None and now - last < self.violation_debounce:
            return None
        self._last_violation[violation_type] = now
        data = _raise_for_error(self.http.post(
            self._url(f"/attempts/{self.attempt_id}/violations"),
            json={"sessionToken": self.session_token, "type": violation_type},
        ))
        self.violation_count = data["violationCount"]
        if data["shouldAutoSubmit"]:
            logger.info(f"Violation limit reached for attempt {self.attempt_id}; submitting")
            self.submit("violation_threshold")
        return data

    def submit(self, trigger: str = "manual") -> dict:
        if self.submitted and self.result is not None:
            return self.result
        with self._lock:
            payload = {
                "sessionToken": self.session_token,
                "answers": dict(self.answers),
                "flags": dict(self.flags),
                "elapsedSeconds": self.elapsed_seconds,
                "trigger": trigger,
            }
        self.result = _raise_for_error(self.http.post(self._url(f"/attempts/{self.attempt_id}/submit"), json=payload))
        self._finish()
        return self.result

    def fetch_result(self) -> dict:
        return _raise_for_error(self.http.get(self._url(f"/attempts/{self.attempt_id}/result")))

    # ---------- background loops ----------

    def _kick(self) -> None:
        if not self.kicked:
            logger.warning(f"Session for attempt {self.attempt_id} was replaced by another login")
        self.kicked = True
        self._stop.set()

    def _finish(self) -> None:
        self.submitted = True
        self._stop.set()

    def _loop(self, interval: float, action: Callable[[], object]) -> None:
        while not self._stop.wait(interval):
            try:
                action()
            except (httpx.HTTPError, ExamClientError) as e:
                logger.warning(f"{action.__name__} failed: {e}")

    def run(self) -> None:
        """Load the attempt if needed, then start heartbeat, autosave, debounce and countdown loops in daemon threads."""
        self._stop.clear()
        if self.remaining_seconds is None:
            self.load()
        self.heartbeat()
        loops = [
            (self.heartbeat_interval, self.heartbeat),
            (self.autosave_interval, self.autosave),
            (min(0.5, self.autosave_debounce), self.autosave_if_idle),
            (1.0, self.tick),
        ]
        for interval, action in loops:
            thread = threading.Thread(target=self._loop, args=(interval, action), daemon=True)
            thread.start()
            self._threads.append(thread)

    def close(self, timeout: float = 2.0) -> None:
        self._stop.set()
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []
