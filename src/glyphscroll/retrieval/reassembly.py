"""
Reader-side reassembly.

Chunks arrive verified but in any order. They wait in ``pending`` until
every lower index has arrived, then join the contiguous prefix in
``accumulated``. Only that prefix is ever decrypted, decompressed and
shown, so readers see a monotonically growing, in-order text.
"""

import codecs
import logging
import threading
from typing import Dict, List, Optional

from glyphscroll.core.contracts import (
    ChunkGap,
    ProgressSnapshot,
    ReadSnapshot,
    RetrievalStage,
    StoryManifest,
)
from glyphscroll.core.errors import CodecError, IncompleteDataError, IntegrityError
from glyphscroll.publishing.progress import make_snapshot
from glyphscroll.storage.cipher import GlyphCipher
from glyphscroll.storage.compression import IncrementalDecompressor, decompress_data

logger = logging.getLogger(__name__)


class ReassemblyState:
    """
    Progressive reassembly for one story.

    All methods are safe to call from any thread.
    """

    def __init__(self, story_id: str, cipher: Optional[GlyphCipher] = None):
        self.story_id = story_id
        self.cipher = cipher or GlyphCipher()
        self.manifest: Optional[StoryManifest] = None
        self.verified: List[str] = []  # per-chunk digests from the verified hash list
        self.total_count = 0
        self.loaded_count = 0
        self.stage = RetrievalStage.IDLE

        self._lock = threading.Lock()
        self._pending: Dict[int, bytes] = {}
        self._accumulated = bytearray()
        self._gaps: Dict[int, ChunkGap] = {}
        self._text_parts: List[str] = []
        self._decompressor: Optional[IncrementalDecompressor] = None
        self._decoder = codecs.getincrementaldecoder("utf-8")()
        self._preview_broken = False
        self._final_text: Optional[str] = None

    # Setup

    def set_manifest(self, manifest: StoryManifest):
        with self._lock:
            self.manifest = manifest
            self.total_count = manifest.root.total_chunks
            self._decompressor = IncrementalDecompressor(manifest.root.compression)

    def set_digests(self, digests: List[str]):
        with self._lock:
            self.verified = list(digests)

    def set_stage(self, stage: RetrievalStage):
        with self._lock:
            self.stage = stage

    # Chunk intake

    def accept(self, index: int, payload: bytes) -> int:
        """
        Take one verified chunk.

        Args:
            index: Chunk index
            payload: Post-cipher chunk bytes, already checked against its digest

        Returns:
            Number of chunks newly revealed (0 if the chunk is waiting on a lower one)
        """
        with self._lock:
            if self.manifest is None:
                raise IncompleteDataError("Chunk arrived before the manifest")
            if not 0 <= index < self.total_count:
                raise IndexError(f"Chunk index {index} out of range 0..{self.total_count - 1}")
            if index < self.loaded_count or index in self._pending:
                return 0
            self._pending[index] = payload

            revealed = 0
            while self.loaded_count in self._pending:
                chunk = self._pending.pop(self.loaded_count)
                offset = len(self._accumulated)
                self._accumulated.extend(chunk)
                self._preview(self.cipher.decrypt(chunk, offset=offset))
                self.loaded_count += 1
                revealed += 1
            if revealed:
                logger.debug(
                    f"{self.story_id}: revealed {revealed}, prefix now "
                    f"{self.loaded_count}/{self.total_count}"
                )
            return revealed

    def _preview(self, plain: bytes):
        if self._preview_broken:
            return
        try:
            self._text_parts.append(self._decoder.decode(self._decompressor.feed(plain)))
        except (CodecError, UnicodeDecodeError) as e:
            # finish() decodes the whole stream and reports the error
            logger.warning(f"{self.story_id}: progressive decode stopped: {e}")
            self._preview_broken = True

    def add_gap(self, gap: ChunkGap):
        with self._lock:
            self._gaps[gap.index] = gap

    @property
    def gaps(self) -> List[ChunkGap]:
        with self._lock:
            return [self._gaps[i] for i in sorted(self._gaps)]

    @property
    def is_complete(self) -> bool:
        with self._lock:
            return self._final_text is not None

    # Completion

    def finish(self) -> str:
        """
        Decode the whole verified stream.

        Raises:
            IncompleteDataError: If any chunk is still missing
            CodecError: If the stream does not decompress or decode
            IntegrityError: If the decoded length disagrees with the manifest
        """
        with self._lock:
            if self.manifest is None or self.loaded_count != self.total_count:
                raise IncompleteDataError(
                    f"Have {self.loaded_count} of {self.total_count} chunks",
                    context={"story_id": self.story_id},
                )
            root = self.manifest.root
            compressed = self.cipher.decrypt(bytes(self._accumulated))
            raw = decompress_data(compressed, root.compression)
            if root.content_length and len(raw) != root.content_length:
                raise IntegrityError(
                    f"Decoded {len(raw)} bytes, manifest declares {root.content_length}",
                    context={"story_id": self.story_id},
                )
            try:
                text = raw.decode("utf-8")
            except UnicodeDecodeError as e:
                raise CodecError(f"Story is not valid UTF-8: {e}") from e
            self._final_text = text
            self._text_parts = [text]
            return text

    def complete_from_cache(self, manifest: StoryManifest, text: str):
        with self._lock:
            self.manifest = manifest
            self.total_count = manifest.root.total_chunks
            self.loaded_count = self.total_count
            self._final_text = text
            self._text_parts = [text]
            self.stage = RetrievalStage.COMPLETE

    # Views

    def text_so_far(self) -> str:
        with self._lock:
            return "".join(self._text_parts)

    def progress(self) -> ProgressSnapshot:
        with self._lock:
            return make_snapshot(self.stage.value, self.loaded_count, self.total_count)

    def snapshot(self) -> ReadSnapshot:
        with self._lock:
            return ReadSnapshot(
                text_so_far="".join(self._text_parts),
                is_complete=self._final_text is not None,
                progress=make_snapshot(self.stage.value, self.loaded_count, self.total_count),
                stage=self.stage,
                gaps=tuple(self._gaps[i] for i in sorted(self._gaps)),
            )
