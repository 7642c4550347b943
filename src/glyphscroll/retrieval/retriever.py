"""
Retriever: progressive, verified reading of a published story.

Stages: idle -> fetching_manifest -> fetching_hashlist -> fetching_content
-> complete, with error reachable from any fetching stage and cancelled
from any stage.

Every chunk is checked against a digest that chains back to the manifest
root hash before it can be revealed. Fetches run in parallel; reveal is
strictly by index.
"""

import asyncio
import logging
from typing import Callable, List, Optional

from glyphscroll.core.contracts import (
    ChunkGap,
    Config,
    ProgressSnapshot,
    ReadSnapshot,
    RetrievalResult,
    RetrievalStage,
    StoryManifest,
)
from glyphscroll.core.envelope import (
    KIND_CONTENT,
    KIND_HASH_LIST,
    KIND_REF_INDEX,
    KIND_ROOT,
    expect_envelope,
)
from glyphscroll.core.errors import (
    CipherError,
    CodecError,
    GlyphScrollError,
    IncompleteDataError,
    IntegrityError,
    LedgerError,
    ManifestError,
    NetworkError,
)
from glyphscroll.core.hashing import Hasher
from glyphscroll.core.retry import retry_async
from glyphscroll.ingestion.hash_list import HashListBuilder
from glyphscroll.ledger.base import Ledger, TransactionRef
from glyphscroll.retrieval.reassembly import ReassemblyState
from glyphscroll.storage.cache import StoryCache
from glyphscroll.storage.cipher import GlyphCipher
from glyphscroll.storage.manifest import ManifestManager

logger = logging.getLogger(__name__)

# Failures that end a retrieval before content fetching starts
FATAL_ERRORS = (
    LedgerError,
    IntegrityError,
    CodecError,
    CipherError,
    ManifestError,
    IncompleteDataError,
)

ProgressCallback = Callable[[ProgressSnapshot], None]


class RetrievalSession:
    """
    One retrieval in progress.

    ``snapshot()`` may be called from any thread at any time.
    ``cancel()`` may be called before, during or after ``run()``.
    """

    def __init__(
        self,
        retriever: "ScrollRetriever",
        story_id: str,
        manifest_ref: TransactionRef,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self.retriever = retriever
        self.story_id = story_id
        self.manifest_ref = manifest_ref
        self.on_progress = on_progress
        self.state = ReassemblyState(story_id, retriever.cipher)
        self._task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._cancel_requested = False

    async def run(self) -> RetrievalResult:
        """
        Run the retrieval to a terminal stage.

        Returns:
            RetrievalResult; on error or cancellation ``text`` is the verified prefix
        """
        if self._task is not None:
            raise RuntimeError(f"Retrieval of {self.story_id} already started")
        if self._cancel_requested:
            self.state.set_stage(RetrievalStage.CANCELLED)
            return self.result()

        self._loop = asyncio.get_running_loop()
        self._task = self._loop.create_task(self.retriever._run(self))
        try:
            return await self._task
        except asyncio.CancelledError:
            self.state.set_stage(RetrievalStage.CANCELLED)
            self.emit()
            logger.info(f"{self.story_id}: retrieval cancelled at {self.state.loaded_count} chunks")
            if self._cancel_requested:
                return self.result()
            raise

    def cancel(self):
        """Stop issuing fetches and abandon the ones in flight."""
        self._cancel_requested = True
        task, loop = self._task, self._loop
        if task is None or task.done():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            task.cancel()
        else:
            loop.call_soon_threadsafe(task.cancel)

    @property
    def cancelled(self) -> bool:
        return self._cancel_requested

    def snapshot(self) -> ReadSnapshot:
        return self.state.snapshot()

    def emit(self):
        if self.on_progress is not None:
            self.on_progress(self.state.progress())

    def result(
        self,
        from_cache: bool = False,
        error: Optional[Exception] = None,
    ) -> RetrievalResult:
        snapshot = self.state.snapshot()
        return RetrievalResult(
            story_id=self.story_id,
            stage=snapshot.stage,
            text=snapshot.text_so_far,
            is_complete=snapshot.is_complete,
            manifest=self.state.manifest,
            from_cache=from_cache,
            gaps=list(snapshot.gaps),
            error=error,
        )


class ScrollRetriever:
    """Reads stories from a ledger, verifying everything it reveals."""

    def __init__(
        self,
        ledger: Ledger,
        cache: Optional[StoryCache] = None,
        config: Optional[Config] = None,
        hasher: Optional[Hasher] = None,
        cipher: Optional[GlyphCipher] = None,
    ):
        """
        Initialize retriever.

        Args:
            ledger: Ledger to read from
            cache: Checked before any ledger read, written after a complete read
            config: Retry, timeout and concurrency settings
            hasher: Digest function (SHA-256 by default)
            cipher: Byte cipher (keyed from config by default)
        """
        self.ledger = ledger
        self.cache = cache
        self.config = config or Config()
        self.hasher = hasher or Hasher()
        self.cipher = cipher or GlyphCipher(self.config.cipher_key)
        self.verifier = HashListBuilder(self.config.resolved_digests_per_chunk(), self.hasher)
        self._retry = self.config.retry_config()

    def open(
        self,
        story_id: str,
        manifest_ref: TransactionRef,
        on_progress: Optional[ProgressCallback] = None,
    ) -> RetrievalSession:
        return RetrievalSession(self, story_id, manifest_ref, on_progress)

    async def retrieve(
        self,
        story_id: str,
        manifest_ref: TransactionRef,
        on_progress: Optional[ProgressCallback] = None,
    ) -> RetrievalResult:
        """Open a session and run it."""
        return await self.open(story_id, manifest_ref, on_progress).run()

    async def _run(self, session: RetrievalSession) -> RetrievalResult:
        state = session.state
        story_id = session.story_id

        cached = self._cache_lookup(story_id)
        if cached is not None:
            state.complete_from_cache(cached.manifest, cached.content)
            session.emit()
            logger.info(f"{story_id}: served from cache")
            return session.result(from_cache=True)

        stage = RetrievalStage.FETCHING_MANIFEST
        try:
            state.set_stage(stage)
            session.emit()
            manifest = await self.fetch_manifest(story_id, session.manifest_ref)
            state.set_manifest(manifest)

            stage = RetrievalStage.FETCHING_HASHLIST
            state.set_stage(stage)
            session.emit()
            digests = await self.fetch_hash_list(manifest)
            state.set_digests(digests)
        except FATAL_ERRORS as e:
            return self._fail(session, stage, e)

        state.set_stage(RetrievalStage.FETCHING_CONTENT)
        session.emit()
        await self._fetch_content(session, manifest, digests)

        gaps = state.gaps
        if gaps:
            error = IncompleteDataError(
                f"{len(gaps)} of {manifest.root.total_chunks} chunks could not be verified",
                context={"story_id": story_id, "gaps": [gap.index for gap in gaps]},
            )
            return self._fail(session, RetrievalStage.FETCHING_CONTENT, error)

        try:
            text = state.finish()
        except (CodecError, IntegrityError, IncompleteDataError) as e:
            return self._fail(session, RetrievalStage.FETCHING_CONTENT, e)

        state.set_stage(RetrievalStage.COMPLETE)
        session.emit()
        logger.info(f"{story_id}: retrieved {manifest.root.total_chunks} chunks, {len(text)} chars")
        self._cache_store(story_id, manifest, text)
        return session.result()

    def _fail(self, session: RetrievalSession, stage: RetrievalStage,
              error: Exception) -> RetrievalResult:
        logger.error(f"{session.story_id}: retrieval failed while {stage.value}: {error}")
        session.state.set_stage(RetrievalStage.ERROR)
        session.emit()
        return session.result(error=error)

    # Ledger reads

    async def _read(self, ref: TransactionRef, label: str) -> bytes:
        async def attempt() -> bytes:
            try:
                return await asyncio.wait_for(self.ledger.read(ref),
                                              timeout=self.config.fetch_timeout_s)
            except asyncio.TimeoutError as e:
                raise NetworkError(f"Timed out reading {ref}", context={"ref": ref}) from e

        return await retry_async(attempt, config=self._retry, description=f"read {label}")

    async def _read_verified(
        self,
        ref: TransactionRef,
        kind: str,
        story_id: str,
        index: int,
        expected_digest: Optional[str] = None,
    ) -> bytes:
        """
        Read one envelope and check it, re-reading on integrity failures.

        Raises:
            IntegrityError: After ``integrity_attempts`` mismatches
        """
        label = f"{kind} #{index} of {story_id}"
        for attempt in range(1, self.config.integrity_attempts + 1):
            raw = await self._read(ref, label)
            try:
                data = expect_envelope(raw, kind, story_id, index)
                if expected_digest is not None:
                    self.verifier.verify_payload(index, data, expected_digest)
                return data
            except IntegrityError as e:
                if attempt >= self.config.integrity_attempts:
                    raise
                logger.warning(
                    f"{label}: integrity check failed "
                    f"(attempt {attempt}/{self.config.integrity_attempts}): {e}"
                )
        raise IntegrityError(f"{label}: no attempts made", index=index)

    async def fetch_manifest(self, story_id: str, manifest_ref: TransactionRef) -> StoryManifest:
        """
        Read, validate and resolve a manifest root.

        Raises:
            IntegrityError: If the root does not belong to this story or its
                commitment does not hold
            ManifestError: If the root is structurally invalid
        """
        data = await self._read_verified(manifest_ref, KIND_ROOT, story_id, 0)
        decoded = ManifestManager.decode_root(data)
        root = decoded.root
        if root.story_id != story_id:
            raise IntegrityError(f"Manifest is for {root.story_id}, not {story_id}")
        errors = ManifestManager.validate_root(root)
        if errors:
            raise ManifestError(f"Invalid manifest root: {'; '.join(errors)}",
                                context={"story_id": story_id})
        ManifestManager.check_root_commitment(root, self.hasher)

        if decoded.spilled:
            pieces = []
            for index, ref in enumerate(decoded.ref_index):
                pieces.append(await self._read_verified(ref, KIND_REF_INDEX, story_id, index))
            index_data = b"".join(pieces)
            if self.hasher.hash(index_data) != decoded.ref_index_digest:
                raise IntegrityError(f"Reference index digest mismatch for {story_id}")
            hash_list_refs, chunk_refs = ManifestManager.decode_ref_index(index_data)
        else:
            hash_list_refs, chunk_refs = decoded.hash_list_refs, decoded.chunk_refs

        manifest = StoryManifest(
            root=root,
            hash_list_refs=hash_list_refs,
            chunk_refs=chunk_refs,
            manifest_ref=manifest_ref,
        )
        errors = ManifestManager.validate(manifest)
        if errors:
            raise ManifestError(f"Invalid manifest: {'; '.join(errors)}",
                                context={"story_id": story_id})
        logger.info(
            f"{story_id}: manifest ok, {root.total_chunks} chunks, "
            f"{root.total_hash_list_chunks} hash list chunks"
        )
        return manifest

    async def fetch_hash_list(self, manifest: StoryManifest) -> List[str]:
        """
        Fetch every hash-list chunk in parallel and rebuild the digest list.

        Returns:
            One digest per content chunk, in index order
        """
        root = manifest.root
        semaphore = asyncio.Semaphore(self.config.hash_list_fetch_concurrency)

        async def fetch(index: int) -> bytes:
            async with semaphore:
                return await self._read_verified(
                    manifest.hash_list_refs[index], KIND_HASH_LIST, root.story_id, index,
                    expected_digest=root.hash_list_digests[index],
                )

        results = await asyncio.gather(
            *(fetch(i) for i in range(root.total_hash_list_chunks)), return_exceptions=True
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return HashListBuilder.digests_from_payloads(results, root.total_chunks)

    async def _fetch_content(self, session: RetrievalSession, manifest: StoryManifest,
                             digests: List[str]):
        state = session.state
        story_id = manifest.story_id
        semaphore = asyncio.Semaphore(self.config.content_fetch_concurrency)

        async def fetch(index: int):
            async with semaphore:
                try:
                    data = await self._read_verified(
                        manifest.chunk_refs[index], KIND_CONTENT, story_id, index,
                        expected_digest=digests[index],
                    )
                except GlyphScrollError as e:
                    logger.warning(f"{story_id}: chunk {index} left as a gap: {e}")
                    state.add_gap(ChunkGap(index=index, reason=str(e)))
                    session.emit()
                    return
                if state.accept(index, data):
                    session.emit()

        await asyncio.gather(*(fetch(i) for i in range(manifest.root.total_chunks)))

    # Cache

    def _cache_lookup(self, story_id: str):
        if self.cache is None:
            return None
        return self.cache.get_story(story_id)

    def _cache_store(self, story_id: str, manifest: StoryManifest, text: str):
        if self.cache is None:
            return
        try:
            self.cache.put_manifest(story_id, manifest, text)
        except (OSError, RuntimeError) as e:
            logger.warning(f"Could not cache {story_id}: {e}")
