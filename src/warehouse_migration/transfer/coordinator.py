"""
Storage Transfer Coordinator

Copies objects from S3 into the GCS staging prefix with Storage Transfer
Service (STS). The coordinator only builds a one-shot job, submits it and
bounds how long the caller waits; STS does the copy itself.

Reruns are idempotent: unchanged objects are skipped, changed objects are
overwritten and nothing is deleted on either side.

References:
- https://cloud.google.com/storage-transfer/docs/reference/rest/v1/transferJobs
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Optional

from google.cloud import storage_transfer

from ..errors import TransferError
from ..models.results import TransferDescriptor, TransferResult, TransferState
from .secrets import SecretResolver

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 60.0
DEFAULT_MAX_POLLS = 360


def normalize_prefix(prefix: Optional[str]) -> str:
    """STS treats paths as directories: non-empty prefixes must end with '/'."""
    if not prefix:
        return ""
    return prefix if prefix.endswith("/") else f"{prefix}/"


def build_transfer_job(
    project_id: str,
    descriptor: TransferDescriptor,
    access_key_id: str,
    secret_access_key: str,
    now: Optional[datetime] = None,
) -> storage_transfer.TransferJob:
    """
    Build a one-time S3 -> GCS transfer job.

    The schedule starts and ends today (UTC) with the start time set to now,
    so STS runs the job exactly once.

    Args:
        project_id: Project owning the transfer job
        descriptor: Source and sink locations
        access_key_id: AWS access key id
        secret_access_key: AWS secret access key
        now: Current time (UTC), injectable for tests

    Returns:
        TransferJob ready for CreateTransferJobRequest
    """
    now = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    today = {"year": now.year, "month": now.month, "day": now.day}

    transfer_spec = storage_transfer.TransferSpec(
        aws_s3_data_source=storage_transfer.AwsS3Data(
            bucket_name=descriptor.source_bucket,
            path=normalize_prefix(descriptor.source_prefix),
            aws_access_key=storage_transfer.AwsAccessKey(
                access_key_id=access_key_id,
                secret_access_key=secret_access_key,
            ),
        ),
        gcs_data_sink=storage_transfer.GcsData(
            bucket_name=descriptor.dest_bucket,
            path=normalize_prefix(descriptor.dest_prefix),
        ),
        transfer_options=storage_transfer.TransferOptions(
            overwrite_when=storage_transfer.TransferOptions.OverwriteWhen.DIFFERENT,
            delete_objects_from_source_after_transfer=False,
            delete_objects_unique_in_sink=False,
        ),
    )

    schedule = storage_transfer.Schedule(
        schedule_start_date=today,
        schedule_end_date=today,
        start_time_of_day={"hours": now.hour, "minutes": now.minute, "seconds": now.second},
    )

    description = descriptor.description or (
        f"Migration: s3://{descriptor.source_bucket}/{descriptor.source_prefix}"
    )

    return storage_transfer.TransferJob(
        project_id=project_id,
        description=description,
        transfer_spec=transfer_spec,
        schedule=schedule,
        status=storage_transfer.TransferJob.Status.ENABLED,
    )


class TransferCoordinator:
    """
    Submits and monitors Storage Transfer Service jobs.

    Monitoring polls the job every poll_interval seconds for at most
    max_polls attempts. The wait between polls is a threading.Event, so a
    caller-supplied cancel event stops the wait immediately.
    """

    def __init__(
        self,
        project_id: str,
        secret_resolver: Optional[SecretResolver] = None,
        client: Optional[storage_transfer.StorageTransferServiceClient] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_polls: int = DEFAULT_MAX_POLLS,
        run_now: bool = True,
    ):
        """
        Initialize the coordinator.

        Args:
            project_id: Project owning transfer jobs
            secret_resolver: Resolver for AWS credentials (defaults to project_id)
            client: STS client (created when omitted)
            poll_interval: Seconds between status polls
            max_polls: Maximum number of status polls
            run_now: Call RunTransferJob right after creation (default: True)
        """
        self.project_id = project_id
        self.secret_resolver = secret_resolver or SecretResolver(project_id)
        self.client = client or storage_transfer.StorageTransferServiceClient()
        self.poll_interval = poll_interval
        self.max_polls = max_polls
        self.run_now = run_now

        logger.info(
            f"Initialized TransferCoordinator for project={project_id}, "
            f"poll_interval={poll_interval}s, max_polls={max_polls}"
        )

    def execute_transfer(
        self,
        descriptor: TransferDescriptor,
        cancel_event: Optional[threading.Event] = None,
    ) -> TransferResult:
        """
        Copy objects from S3 into GCS and wait for STS to finish.

        Args:
            descriptor: Source, sink and credential secret names
            cancel_event: Optional event; setting it stops monitoring

        Returns:
            TransferResult. state is TIMED_OUT when the poll bound was
            exhausted and CANCELLED when the caller cancelled; in both
            cases the job may still be running.

        Raises:
            CredentialError: If credentials cannot be resolved
            TransferError: If submission fails or the run ends in error
        """
        source_uri = f"s3://{descriptor.source_bucket}/{descriptor.source_prefix}"
        sink_uri = f"gs://{descriptor.dest_bucket}/{descriptor.dest_prefix}"
        logger.info(f"Starting STS transfer: {source_uri} -> {sink_uri}")

        access_key_id = self.secret_resolver.get_secret(descriptor.access_key_secret)
        secret_access_key = self.secret_resolver.get_secret(descriptor.secret_key_secret)

        transfer_job = build_transfer_job(
            self.project_id, descriptor, access_key_id, secret_access_key
        )

        try:
            response = self.client.create_transfer_job(
                request=storage_transfer.CreateTransferJobRequest(transfer_job=transfer_job)
            )
        except Exception as e:
            logger.error(f"Failed to create transfer job for {source_uri}: {e}")
            raise TransferError(f"Transfer job submission failed: {e}") from e

        job_name = response.name
        logger.info(f"Created transfer job: {job_name}")

        if self.run_now:
            self._run_job(job_name)

        return self.wait_for_completion(job_name, cancel_event=cancel_event)

    def _run_job(self, job_name: str) -> None:
        try:
            operation = self.client.run_transfer_job(
                request={"job_name": job_name, "project_id": self.project_id}
            )
            operation_name = getattr(getattr(operation, "operation", None), "name", "")
            logger.info(f"Started transfer operation {operation_name or 'for ' + job_name}")
        except Exception as e:
            logger.error(f"Failed to start transfer job {job_name}: {e}")
            raise TransferError(f"Transfer job {job_name} could not be started: {e}") from e

    def wait_for_completion(
        self,
        job_name: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> TransferResult:
        """
        Poll a transfer job until it reaches a terminal state.

        Poll errors are logged and retried until the bound is reached.

        Raises:
            TransferError: If the latest transfer operation finished with an error
        """
        cancel_event = cancel_event or threading.Event()

        for attempt in range(1, self.max_polls + 1):
            if cancel_event.is_set():
                return self._cancelled(job_name, attempt - 1)

            try:
                state = self._poll_once(job_name)
            except TransferError:
                raise
            except Exception as e:
                logger.warning(
                    f"Transfer status poll {attempt}/{self.max_polls} for {job_name} failed: {e}"
                )
                state = None

            if state is not None:
                logger.info(f"Transfer job {job_name} finished with state {state.value}")
                return TransferResult(job_name=job_name, state=state, polls=attempt)

            if attempt % 10 == 0:
                logger.info(f"Transfer job {job_name} still running after {attempt} polls")

            if attempt < self.max_polls and cancel_event.wait(self.poll_interval):
                return self._cancelled(job_name, attempt)

        logger.warning(
            f"Transfer job {job_name} not confirmed complete after {self.max_polls} polls "
            f"({self.max_polls * self.poll_interval:.0f}s); continuing without confirmation"
        )
        return TransferResult(job_name=job_name, state=TransferState.TIMED_OUT, polls=self.max_polls)

    def _cancelled(self, job_name: str, polls: int) -> TransferResult:
        logger.warning(f"Monitoring of transfer job {job_name} cancelled after {polls} polls")
        return TransferResult(job_name=job_name, state=TransferState.CANCELLED, polls=polls)

    def _poll_once(self, job_name: str) -> Optional[TransferState]:
        """Return a terminal state, or None while the job is still running."""
        job = self.client.get_transfer_job(
            request={"job_name": job_name, "project_id": self.project_id}
        )

        if job.status == storage_transfer.TransferJob.Status.DELETED:
            logger.warning(f"Transfer job {job_name} was deleted")
            return TransferState.DELETED
        if job.status == storage_transfer.TransferJob.Status.DISABLED:
            logger.warning(f"Transfer job {job_name} was disabled")
            return TransferState.DISABLED

        operation_name = job.latest_operation_name
        if not operation_name:
            logger.debug(f"Transfer job {job_name} has not started a run yet")
            return None

        operation = self.client.transport.operations_client.get_operation(operation_name)
        if not operation.done:
            return None

        if operation.HasField("error") and operation.error.code != 0:
            message = operation.error.message or f"code {operation.error.code}"
            logger.error(f"Transfer operation {operation_name} failed: {message}")
            raise TransferError(f"Transfer job {job_name} failed: {message}")

        return TransferState.SUCCEEDED

    def close(self) -> None:
        transport = getattr(self.client, "transport", None)
        if transport is not None and hasattr(transport, "close"):
            transport.close()
