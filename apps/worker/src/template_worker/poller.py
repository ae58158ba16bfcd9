from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from time import sleep as _sleep
from typing import Callable, Protocol

from shared.coordination import CoordinationService, Job, JobStatus
from template_worker.errors import CollaboratorError, CoordinatorError, PermanentCollaboratorError
from template_worker.rendering import TemplateRenderer
from template_worker.retry import RetryPolicy, call_with_retry
from template_worker.selection import CandidateSelector, TieBreaker


class TemplateCollaborators(Protocol):
    def complete(self, prompt: str, *, max_tokens: int = 50) -> str: ...

    def upload_image(self, image_bytes: bytes, *, file_name: str) -> str: ...

    def notify(self, destination: str, text: str) -> None: ...


class AssetSource(Protocol):
    def names(self) -> list[str]: ...


@dataclass(frozen=True)
class TemplateLink:
    option: int
    asset_name: str
    url: str


@dataclass(frozen=True)
class PendingReport:
    job_id: str
    status: JobStatus
    message: str


@dataclass(frozen=True)
class _StoredPicks:
    created_at: datetime
    names: tuple[str, ...]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _log(message: str) -> None:
    print(f"[worker] {message}", flush=True)


def completion_message(job: Job, links: list[TemplateLink]) -> str:
    options = "\n\n".join(f"Option {link.option} ({link.asset_name}):\n{link.url}" for link in links)
    return (
        f'Here are the templates for "{job.title}":\n\n{options}\n\n'
        "Download the one you like best, or reply with @blog pick N to re-render a single option."
    )


class Poller:
    """Processes pending jobs one at a time.

    Terminal status reports that cannot be delivered are kept in memory and
    re-sent at the start of every poll until the coordinator accepts or
    rejects them. Ordered picks are remembered per submitter and title so a
    follow-up's ``selection`` points at the option the submitter was shown.
    """

    def __init__(
        self,
        *,
        coordinator: CoordinationService,
        collaborators: TemplateCollaborators,
        assets: AssetSource,
        renderer: TemplateRenderer,
        tie_breaker: TieBreaker,
        retry_policy: RetryPolicy,
        pending_max_age_seconds: int = 180,
        processed_retention_seconds: int = 600,
        chunk_size: int = 25,
        max_picks: int = 5,
        clock: Callable[[], datetime] = _utc_now,
        sleep: Callable[[float], None] = _sleep,
    ) -> None:
        self._coordinator = coordinator
        self._collaborators = collaborators
        self._assets = assets
        self._renderer = renderer
        self._retry_policy = retry_policy
        self._pending_max_age_seconds = pending_max_age_seconds
        self._processed_retention = timedelta(seconds=processed_retention_seconds)
        self._clock = clock
        self._sleep = sleep
        self._processed: dict[str, datetime] = {}
        self._pending_reports: dict[str, PendingReport] = {}
        self._picks: dict[tuple[str, str], _StoredPicks] = {}
        self._selector = CandidateSelector(
            complete=self._complete,
            tie_breaker=tie_breaker,
            chunk_size=chunk_size,
            max_picks=max_picks,
        )

    @property
    def processed_ids(self) -> set[str]:
        return set(self._processed)

    @property
    def pending_reports(self) -> list[PendingReport]:
        return list(self._pending_reports.values())

    def _retry(self, operation: Callable[[], object], *, label: str) -> object:
        return call_with_retry(operation, policy=self._retry_policy, label=label, sleep=self._sleep)

    def _complete(self, prompt: str) -> str:
        return str(self._retry(lambda: self._collaborators.complete(prompt), label="completion"))

    def poll_once(self) -> int:
        self._flush_reports()

        try:
            jobs = self._coordinator.list_pending(max_age_seconds=self._pending_max_age_seconds)
        except CoordinatorError as exc:
            _log(f"poll failed error={exc}")
            return 0

        processed_count = 0
        for job in jobs:
            if job.id in self._processed:
                _log(f"skipping already processed job_id={job.id}")
                continue

            self._processed[job.id] = job.created_at
            _log(f"processing job_id={job.id} title={job.title!r}")
            try:
                self.process_job(job)
            except CoordinatorError as exc:
                # The job never left pending; let the next poll pick it up again.
                self._processed.pop(job.id, None)
                _log(f"job status report failed job_id={job.id} error={exc}")
                continue
            processed_count += 1

        self._prune_processed()
        return processed_count

    def _prune_processed(self) -> None:
        cutoff = self._clock() - self._processed_retention
        for job_id, created_at in list(self._processed.items()):
            if created_at < cutoff:
                del self._processed[job_id]
                _log(f"cleaned up processed job_id={job_id}")
        for key, stored in list(self._picks.items()):
            if stored.created_at < cutoff:
                del self._picks[key]

    def _flush_reports(self) -> None:
        for report in list(self._pending_reports.values()):
            _log(f"re-sending status report job_id={report.job_id} status={report.status.value}")
            self._report(report)

    def _report(self, report: PendingReport) -> None:
        try:
            self._retry(
                lambda: self._coordinator.update_status(report.job_id, report.status, report.message),
                label="status report",
            )
        except CoordinatorError as exc:
            if exc.transient:
                self._pending_reports[report.job_id] = report
                _log(f"status report deferred job_id={report.job_id} error={exc}")
                return
            _log(f"status report rejected job_id={report.job_id} error={exc}")
        self._pending_reports.pop(report.job_id, None)

    def process_job(self, job: Job) -> None:
        self._coordinator.update_status(job.id, JobStatus.PROCESSING, "Creating templates...")

        try:
            links = self._create_templates(job)
            self._retry(
                lambda: self._collaborators.notify(job.destination, completion_message(job, links)),
                label="notify",
            )
        except Exception as exc:
            self._fail(job, str(exc) or exc.__class__.__name__)
            return

        self._report(PendingReport(job.id, JobStatus.COMPLETED, "All templates created and sent"))
        _log(f"job completed job_id={job.id} templates={len(links)}")

    def _ordered_picks(self, job: Job, names: list[str]) -> list[str]:
        key = (job.submitter_id, job.title)
        stored = self._picks.get(key)
        if job.is_follow_up and stored is not None:
            return list(stored.names)
        if job.is_follow_up:
            _log(f"no earlier picks for follow-up job_id={job.id}; selecting again")

        picks = self._selector.select(names, title=job.title)
        self._picks[key] = _StoredPicks(created_at=job.created_at, names=tuple(picks))
        return picks

    def _create_templates(self, job: Job) -> list[TemplateLink]:
        names = self._assets.names()
        if not names:
            raise PermanentCollaboratorError("No template assets found")

        picks = self._ordered_picks(job, names)
        options = list(enumerate(picks, start=1))
        if job.selection is not None and options:
            index = min(max(job.selection, 1), len(options)) - 1
            options = [options[index]]

        links: list[TemplateLink] = []
        for option, asset_name in options:
            image_bytes = self._renderer.render(title=job.title, asset_name=asset_name)
            url = str(
                self._retry(
                    lambda: self._collaborators.upload_image(
                        image_bytes,
                        file_name=f"{job.title}_Option_{option}",
                    ),
                    label="upload",
                )
            )
            links.append(TemplateLink(option=option, asset_name=asset_name, url=url))
            _log(f"template uploaded job_id={job.id} option={option} url={url}")
        return links

    def _fail(self, job: Job, detail: str) -> None:
        _log(f"job failed job_id={job.id} error={detail}")
        self._report(PendingReport(job.id, JobStatus.ERROR, detail))
        try:
            self._retry(
                lambda: self._collaborators.notify(
                    job.destination,
                    f'Error creating templates for "{job.title}": {detail}',
                ),
                label="notify",
            )
        except CollaboratorError as exc:
            _log(f"failure notice not delivered job_id={job.id} error={exc}")
