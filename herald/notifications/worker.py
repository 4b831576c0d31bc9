"""Delivery workers: one consumer per channel queue with retry, backoff and dead-lettering."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Awaitable, Callable, Iterable

import msgspec
from aio_pika.abc import AbstractChannel, AbstractIncomingMessage, AbstractQueue

from herald.notifications.contracts import DeliveryAttemptEntry, DeliveryJob, DeliveryStatus, InvalidQueueMessageError
from herald.notifications.delivery_attempt_repo import DeliveryAttemptRepository
from herald.notifications.processors import ChannelProcessor
from herald.notifications.producer import DeliveryProducer, build_delivery_message
from herald.notifications.queues import declare_delivery_queue, delivery_queue_name, read_retry_count

logger = logging.getLogger(__name__)

_DECODER = msgspec.json.Decoder(DeliveryJob)

DelayFn = Callable[[float], Awaitable[None]]


def decode_job(body: bytes) -> DeliveryJob:
  """Decode a queue body into a DeliveryJob or raise InvalidQueueMessageError."""
  try:
    job = _DECODER.decode(body)
    uuid.UUID(job.notification_id)
  except (msgspec.DecodeError, ValueError) as exc:
    raise InvalidQueueMessageError(f"Undecodable delivery job: {exc}") from exc
  return job


def backoff_delay(retry_count: int, *, base_seconds: float) -> float:
  """Return the delay before retry ``retry_count + 1``: base, 2*base, 4*base, ..."""
  return base_seconds * (2**retry_count)


class DeliveryWorker:
  """Consume one channel queue and drive each job through the retry state machine.

  A failed job is acknowledged and a copy with an incremented ``x-retry-count`` is
  republished to the same queue after the backoff delay. The delay runs as a background
  task, so the consumer keeps processing other messages meanwhile. Once the retry budget is
  spent the message is rejected without requeue, which the broker routes to the DLQ.
  Delayed retries are best effort: a process exit during the delay drops them.
  """

  def __init__(
    self,
    *,
    processor: ChannelProcessor,
    amqp_channel: AbstractChannel,
    attempt_repo: DeliveryAttemptRepository,
    prefetch: int = 10,
    max_retries: int = 3,
    retry_base_delay: float = 1.0,
    delay_fn: DelayFn = asyncio.sleep,
  ) -> None:
    self._processor = processor
    self._amqp_channel = amqp_channel
    self._attempt_repo = attempt_repo
    self._prefetch = prefetch
    self._max_retries = max_retries
    self._retry_base_delay = retry_base_delay
    self._delay_fn = delay_fn
    self._producer = DeliveryProducer(amqp_channel=amqp_channel)
    self._pending: set[asyncio.Task[None]] = set()
    self._queue: AbstractQueue | None = None
    self._consumer_tag: str | None = None

  @property
  def channel(self):
    return self._processor.channel

  @property
  def pending_retries(self) -> int:
    return len(self._pending)

  async def start(self) -> None:
    await self._amqp_channel.set_qos(prefetch_count=self._prefetch)
    self._queue = await declare_delivery_queue(self._amqp_channel, self.channel)
    self._consumer_tag = await self._queue.consume(self.handle_message)
    logger.info("Delivery worker started queue=%s prefetch=%s max_retries=%s", delivery_queue_name(self.channel), self._prefetch, self._max_retries)

  async def handle_message(self, message: AbstractIncomingMessage) -> None:
    try:
      job = decode_job(message.body)
    except InvalidQueueMessageError as exc:
      # Undecodable bodies can never succeed; skip the retry budget.
      logger.error("Dead-lettering malformed message queue=%s: %s", delivery_queue_name(self.channel), exc)
      await message.nack(requeue=False)
      return

    # The retry count travels in headers; the body is the same on every attempt.
    retry_count = read_retry_count(message.headers)
    try:
      await self._processor.process(job, retry_count=retry_count)
    except Exception as exc:  # noqa: BLE001
      await self._handle_failure(message, job, retry_count, exc)
      return

    # Ack only after the side effect ran; a crash before this point redelivers the job.
    await message.ack()
    logger.debug("Delivered notification_id=%s channel=%s retry_count=%s", job.notification_id, self.channel.value, retry_count)

  async def _handle_failure(self, message: AbstractIncomingMessage, job: DeliveryJob, retry_count: int, exc: Exception) -> None:
    if retry_count < self._max_retries:
      delay = backoff_delay(retry_count, base_seconds=self._retry_base_delay)
      logger.warning(
        "Delivery failed notification_id=%s channel=%s retry_count=%s; retrying in %.1fs: %s", job.notification_id, self.channel.value, retry_count, delay, exc
      )
      # Ack first so the broker never redelivers this copy.
      await message.ack()
      task = asyncio.create_task(self._republish_later(job, retry_count + 1, delay))
      self._pending.add(task)
      task.add_done_callback(self._retry_done)
      return

    # Budget spent: reject without requeue so the queue dead-letters it to the DLQ.
    logger.error("Delivery permanently failed notification_id=%s channel=%s retry_count=%s: %s", job.notification_id, self.channel.value, retry_count, exc, exc_info=exc)
    await message.nack(requeue=False)
    try:
      await self._attempt_repo.log(
        DeliveryAttemptEntry(
          notification_id=uuid.UUID(job.notification_id),
          channel=self.channel,
          status=DeliveryStatus.PERMANENT_FAILURE,
          attempt_number=retry_count + 1,
          error=str(exc),
          trace_id=job.trace_id,
        )
      )
    except Exception as log_exc:  # noqa: BLE001
      # Already dead-lettered; a lost audit row is only logged.
      logger.error("Permanent failure log insert failed notification_id=%s: %s", job.notification_id, log_exc, exc_info=True)

  async def _republish_later(self, job: DeliveryJob, retry_count: int, delay: float) -> None:
    await self._delay_fn(delay)
    await self._producer.publish(self.channel, build_delivery_message(job, retry_count=retry_count))

  def _retry_done(self, task: asyncio.Task[None]) -> None:
    """Drop a finished retry and log its failure, if any."""
    self._pending.discard(task)
    if task.cancelled():
      return
    exc = task.exception()
    if exc is not None:
      logger.error("Delayed retry republish failed channel=%s: %s", self.channel.value, exc, exc_info=exc)

  async def wait_for_pending(self) -> None:
    """Wait until every scheduled retry has been republished."""
    while self._pending:
      await asyncio.gather(*list(self._pending), return_exceptions=True)

  async def close(self) -> None:
    """Stop consuming and cancel delayed retries that have not fired yet."""
    if self._queue is not None and self._consumer_tag is not None:
      await self._queue.cancel(self._consumer_tag)
      self._consumer_tag = None

    pending = list(self._pending)
    for task in pending:
      task.cancel()
    if pending:
      await asyncio.gather(*pending, return_exceptions=True)
      logger.info("Cancelled delayed retries channel=%s count=%s", self.channel.value, len(pending))


class DeliveryWorkerPool:
  """Own the per-channel workers of one process."""

  def __init__(self, workers: Iterable[DeliveryWorker]) -> None:
    self._workers = list(workers)

  @property
  def workers(self) -> list[DeliveryWorker]:
    return list(self._workers)

  async def start(self) -> None:
    for worker in self._workers:
      await worker.start()

  async def close(self) -> None:
    for worker in self._workers:
      await worker.close()
