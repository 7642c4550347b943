"""
Publisher: submits a PublicationPackage to a ledger.

Order on the ledger:
1. hash-list chunks (g-h-v1)
2. content chunks (g-c-v1)
3. reference-index chunks (g-x-v1), only when the root would not fit
4. manifest root (g-r-v1), carrying every reference above

The root goes last so that a reader holding its reference can resolve the
whole story from it. Confirmed references are kept in a per-story
checkpoint; publishing the same package again resumes from there.
"""

import asyncio
import logging
from typing import Callable, Dict, List, Optional, Set

from glyphscroll.core.contracts import (
    Config,
    ManifestRoot,
    ProgressSnapshot,
    PublicationPackage,
    PublishCheckpoint,
    PublishResult,
    PublishStage,
    PublishStatus,
    StoryManifest,
)
from glyphscroll.core.envelope import (
    KIND_CONTENT,
    KIND_HASH_LIST,
    KIND_REF_INDEX,
    KIND_ROOT,
    encode_envelope,
    max_chunk_payload,
)
from glyphscroll.core.errors import (
    ConcurrentPublishError,
    LedgerError,
    ManifestError,
    PayloadTooLargeError,
)
from glyphscroll.core.hashing import Hasher
from glyphscroll.core.retry import retry_async
from glyphscroll.ingestion.chunker import FixedSizeChunker
from glyphscroll.ledger.base import Ledger, Signer, TransactionRef
from glyphscroll.publishing.progress import ProgressChannel, PublishStateMachine, make_snapshot
from glyphscroll.storage.cache import StoryCache
from glyphscroll.storage.manifest import ManifestManager

logger = logging.getLogger(__name__)


class ScrollPublisher:
    """Publishes stories to one ledger, one flight per story at a time."""

    def __init__(
        self,
        ledger: Ledger,
        config: Optional[Config] = None,
        cache: Optional[StoryCache] = None,
        hasher: Optional[Hasher] = None,
    ):
        """
        Initialize publisher.

        Args:
            ledger: Ledger to submit to
            config: Retry policy and payload limit
            cache: If given, completed stories are cached for their author
            hasher: Used for the reference-index digest
        """
        self.ledger = ledger
        self.config = config or Config()
        self.cache = cache
        self.hasher = hasher or Hasher()
        self.max_payload_size = min(
            self.config.max_payload_size,
            getattr(ledger, "max_payload_size", self.config.max_payload_size),
        )
        self._retry = self.config.retry_config()
        self._checkpoints: Dict[str, PublishCheckpoint] = {}
        self._machines: Dict[str, PublishStateMachine] = {}
        self._in_flight: Set[str] = set()

    # Checkpoints

    def checkpoint_for(self, story_id: str) -> Optional[PublishCheckpoint]:
        return self._checkpoints.get(story_id)

    def restore_checkpoint(self, checkpoint: PublishCheckpoint,
                           root: Optional[ManifestRoot] = None):
        """
        Seed a checkpoint saved by an earlier process.

        Args:
            checkpoint: Saved checkpoint
            root: If given, the root of the package about to be resumed

        Raises:
            ConcurrentPublishError: If the story is publishing right now
            ManifestError: If the checkpoint was recorded for a different package
        """
        if checkpoint.story_id in self._in_flight:
            raise ConcurrentPublishError(
                f"Cannot restore a checkpoint while {checkpoint.story_id} is publishing"
            )
        if root is not None and not checkpoint.is_empty and not checkpoint.matches(root):
            raise _mismatch(checkpoint, root)
        self._checkpoints[checkpoint.story_id] = checkpoint

    def _checkpoint_for_package(self, package: PublicationPackage) -> PublishCheckpoint:
        root = package.manifest_root
        checkpoint = self._checkpoints.get(root.story_id)
        if checkpoint is None or checkpoint.is_empty:
            checkpoint = PublishCheckpoint(
                story_id=root.story_id,
                manifest_root_hash=root.manifest_root_hash,
                total_chunks=root.total_chunks,
            )
            self._checkpoints[root.story_id] = checkpoint
        elif not checkpoint.matches(root):
            raise _mismatch(checkpoint, root)
        return checkpoint

    def stage_of(self, story_id: str) -> Optional[PublishStage]:
        machine = self._machines.get(story_id)
        return machine.stage if machine else None

    # Publishing

    async def publish(
        self,
        package: PublicationPackage,
        signer: Signer,
        on_progress: Optional[Callable[[ProgressSnapshot], None]] = None,
        channel: Optional[ProgressChannel] = None,
    ) -> PublishResult:
        """
        Publish a package, resuming from any checkpoint for its story.

        Args:
            package: Built by ManifestBuilder
            signer: Signs every submission
            on_progress: Called with each ProgressSnapshot
            channel: Receives the same snapshots

        Returns:
            PublishResult (completed, partial or failed)

        Raises:
            ConcurrentPublishError: If this story is already being published
            ManifestError: If the package root is invalid, or a checkpoint for
                this story was recorded for a different package
            PayloadTooLargeError: If a chunk or the root cannot fit one transaction
        """
        story_id = package.story_id
        if story_id in self._in_flight:
            raise ConcurrentPublishError(
                f"Story {story_id} is already being published", context={"story_id": story_id}
            )
        self._in_flight.add(story_id)
        try:
            return await self._publish(package, signer, on_progress, channel)
        finally:
            self._in_flight.discard(story_id)

    async def _publish(self, package, signer, on_progress, channel) -> PublishResult:
        story_id = package.story_id
        root = package.manifest_root
        total = root.total_chunks
        checkpoint = self._checkpoint_for_package(package)

        def emit(stage: PublishStage, current: int, stage_total: int, message: str = ""):
            snapshot = make_snapshot(stage.value, current, stage_total, message)
            if channel is not None:
                channel.publish(snapshot)
            if on_progress is not None:
                on_progress(snapshot)

        if checkpoint.manifest_ref is not None:
            logger.info(f"{story_id} already published as {checkpoint.manifest_ref}")
            emit(PublishStage.COMPLETED, total, total, "already published")
            return self._result(PublishStatus.COMPLETED, package, checkpoint,
                                manifest=self._manifest(package, checkpoint))

        machine = PublishStateMachine(story_id)
        self._machines[story_id] = machine
        emit(PublishStage.PREPARING, 0, total)

        try:
            machine.advance(PublishStage.PROCESSING)
            emit(PublishStage.PROCESSING, 0, total)
            self._check_package(package)

            machine.advance(PublishStage.PUBLISHING_HASHLIST)
            hash_list_total = root.total_hash_list_chunks
            emit(PublishStage.PUBLISHING_HASHLIST, len(checkpoint.hash_list_refs), hash_list_total)
            for chunk in package.hash_list_chunks:
                if chunk.index in checkpoint.hash_list_refs:
                    continue
                try:
                    ref = await self._submit(KIND_HASH_LIST, story_id, chunk.index,
                                             chunk.payload, signer)
                except LedgerError as e:
                    return self._fail(machine, package, checkpoint, emit,
                                      f"Hash list chunk {chunk.index} failed: {e.message}")
                checkpoint.hash_list_refs[chunk.index] = ref
                emit(PublishStage.PUBLISHING_HASHLIST, len(checkpoint.hash_list_refs),
                     hash_list_total)

            machine.advance(PublishStage.PUBLISHING_CONTENT)
            emit(PublishStage.PUBLISHING_CONTENT, checkpoint.confirmed_glyphs, total)
            for chunk in package.content_chunks:
                if chunk.index in checkpoint.content_refs:
                    continue
                try:
                    ref = await self._submit(KIND_CONTENT, story_id, chunk.index,
                                             chunk.payload, signer)
                except LedgerError as e:
                    machine.fail()
                    reason = f"Glyph {chunk.index} failed: {e.message}"
                    logger.warning(
                        f"{story_id}: partial publish, {checkpoint.confirmed_glyphs}/{total} "
                        f"glyphs confirmed ({reason})"
                    )
                    emit(PublishStage.FAILED, checkpoint.confirmed_glyphs, total, reason)
                    return self._result(PublishStatus.PARTIAL, package, checkpoint, reason=reason)
                checkpoint.content_refs[chunk.index] = ref
                emit(PublishStage.PUBLISHING_CONTENT, checkpoint.confirmed_glyphs, total)

            machine.advance(PublishStage.CREATING_ROOT)
            emit(PublishStage.CREATING_ROOT, 0, 1)
            manifest = self._manifest(package, checkpoint)
            try:
                manifest_ref = await self._publish_root(manifest, checkpoint, signer)
            except LedgerError as e:
                return self._fail(machine, package, checkpoint, emit,
                                  f"Manifest root failed: {e.message}")
            checkpoint.manifest_ref = manifest_ref
            manifest.manifest_ref = manifest_ref

            machine.advance(PublishStage.COMPLETED)
            emit(PublishStage.COMPLETED, total, total, manifest_ref)
        except asyncio.CancelledError:
            logger.warning(f"{story_id}: publish cancelled at {machine.stage.value}")
            machine.fail()
            emit(PublishStage.FAILED, checkpoint.confirmed_glyphs, total, "cancelled")
            raise
        except (ManifestError, PayloadTooLargeError):
            machine.fail()
            emit(PublishStage.FAILED, checkpoint.confirmed_glyphs, total, "invalid package")
            raise

        logger.info(f"Published {story_id} ({total} glyphs) as {manifest_ref}")
        self._cache_completed(story_id, manifest, package.text)
        return self._result(PublishStatus.COMPLETED, package, checkpoint, manifest=manifest)

    def _check_package(self, package: PublicationPackage):
        errors = ManifestManager.validate_root(package.manifest_root)
        if errors:
            raise ManifestError(f"Invalid manifest root: {'; '.join(errors)}",
                                context={"story_id": package.story_id})
        capacity = max_chunk_payload(self.max_payload_size)
        largest = max(
            [chunk.size for chunk in package.content_chunks]
            + [len(chunk.payload) for chunk in package.hash_list_chunks]
        )
        if largest > capacity:
            raise PayloadTooLargeError(
                f"Chunk of {largest} bytes exceeds the {capacity}-byte capacity "
                f"of a {self.max_payload_size}-byte transaction",
                context={"story_id": package.story_id},
            )

    async def _submit(self, kind: str, story_id: str, index: int, data: bytes,
                      signer: Signer) -> TransactionRef:
        payload = encode_envelope(kind, story_id, index, data)
        return await self._submit_payload(payload, signer, f"{kind} #{index} of {story_id}")

    async def _publish_root(self, manifest: StoryManifest, checkpoint: PublishCheckpoint,
                            signer: Signer) -> TransactionRef:
        story_id = manifest.story_id
        payload = encode_envelope(KIND_ROOT, story_id, 0, ManifestManager.encode_root(manifest))

        if len(payload) > self.max_payload_size:
            index_data = ManifestManager.encode_ref_index(manifest)
            pieces = FixedSizeChunker(max_chunk_payload(self.max_payload_size)).split(index_data)
            logger.info(
                f"{story_id}: root is {len(payload)} bytes, spilling references "
                f"into {len(pieces)} index chunks"
            )
            for piece in pieces:
                if piece.index in checkpoint.index_refs:
                    continue
                checkpoint.index_refs[piece.index] = await self._submit(
                    KIND_REF_INDEX, story_id, piece.index, piece.payload, signer
                )
            ref_index = [checkpoint.index_refs[piece.index] for piece in pieces]
            root_data = ManifestManager.encode_root(
                manifest, ref_index=ref_index, ref_index_digest=self.hasher.hash(index_data)
            )
            payload = encode_envelope(KIND_ROOT, story_id, 0, root_data)
            if len(payload) > self.max_payload_size:
                raise PayloadTooLargeError(
                    f"Manifest root is {len(payload)} bytes even with a reference index; "
                    f"limit is {self.max_payload_size}",
                    context={"story_id": story_id, "index_chunks": len(pieces)},
                )

        return await self._submit_payload(payload, signer, f"manifest root of {story_id}")

    async def _submit_payload(self, payload: bytes, signer: Signer, label: str) -> TransactionRef:
        ref = await retry_async(
            lambda: self.ledger.submit(payload, signer),
            config=self._retry,
            description=f"submit {label}",
        )
        logger.debug(f"{label} confirmed as {ref}")
        return ref

    def _cache_completed(self, story_id: str, manifest: StoryManifest, text: str):
        if self.cache is None:
            return
        try:
            self.cache.put_manifest(story_id, manifest, text)
        except (OSError, RuntimeError) as e:
            logger.warning(f"Could not cache {story_id} after publishing: {e}")

    @staticmethod
    def _manifest(package: PublicationPackage, checkpoint: PublishCheckpoint) -> StoryManifest:
        return StoryManifest(
            root=package.manifest_root,
            hash_list_refs=_ordered(checkpoint.hash_list_refs),
            chunk_refs=_ordered(checkpoint.content_refs),
            manifest_ref=checkpoint.manifest_ref,
        )

    def _fail(self, machine, package, checkpoint, emit, reason: str) -> PublishResult:
        machine.fail()
        logger.error(f"{package.story_id}: publish failed: {reason}")
        emit(PublishStage.FAILED, checkpoint.confirmed_glyphs, package.manifest_root.total_chunks,
             reason)
        return self._result(PublishStatus.FAILED, package, checkpoint, reason=reason)

    @staticmethod
    def _result(status: PublishStatus, package: PublicationPackage, checkpoint: PublishCheckpoint,
                manifest: Optional[StoryManifest] = None, reason: Optional[str] = None
                ) -> PublishResult:
        return PublishResult(
            status=status,
            story_id=package.story_id,
            successful_glyphs=checkpoint.confirmed_glyphs,
            total_glyphs=package.manifest_root.total_chunks,
            checkpoint=checkpoint,
            manifest=manifest,
            reason=reason,
        )


def _ordered(refs: Dict[int, str]) -> List[str]:
    return [refs[index] for index in sorted(refs)]


def _mismatch(checkpoint: PublishCheckpoint, root: ManifestRoot) -> ManifestError:
    return ManifestError(
        f"Checkpoint for {checkpoint.story_id} was recorded for a different package; "
        f"refusing to resume on top of its references",
        context={
            "story_id": checkpoint.story_id,
            "checkpoint_root_hash": checkpoint.manifest_root_hash,
            "package_root_hash": root.manifest_root_hash,
            "checkpoint_chunks": checkpoint.total_chunks,
            "package_chunks": root.total_chunks,
        },
    )
