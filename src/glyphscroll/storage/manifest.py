"""
Manifest management: JSON shape, validation and root commitment.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from glyphscroll.core.contracts import ManifestRoot, StoryManifest
from glyphscroll.core.errors import CodecError, IntegrityError, ManifestError
from glyphscroll.core.hashing import Hasher, is_hex_digest
from glyphscroll.core.ids import format_timestamp, is_story_id
from glyphscroll.storage.compression import compress_data, decompress_data

logger = logging.getLogger(__name__)

PROTOCOL = "glyph-scroll-manifest-tree-v1"
MANIFEST_VERSION = "1.0"


@dataclass
class DecodedRoot:
    """A manifest root as read from the ledger, before references are resolved."""

    root: ManifestRoot
    hash_list_refs: Optional[List[str]]
    chunk_refs: Optional[List[str]]
    ref_index: Optional[List[str]] = None
    ref_index_digest: Optional[str] = None

    @property
    def spilled(self) -> bool:
        return self.ref_index is not None


class ManifestManager:
    """Serializes, validates and checks story manifests."""

    @staticmethod
    def root_to_dict(root: ManifestRoot) -> Dict:
        return {
            "protocol": PROTOCOL,
            "version": MANIFEST_VERSION,
            "storyId": root.story_id,
            "title": root.title,
            "author": root.author,
            "authorPublicKey": root.author_public_key,
            "totalChunks": root.total_chunks,
            "totalHashListChunks": root.total_hash_list_chunks,
            "manifestRootHash": root.manifest_root_hash,
            "hashListDigests": list(root.hash_list_digests),
            "timestamp": format_timestamp(root.timestamp),
            "compression": root.compression,
            "chunkSize": root.chunk_size,
            "contentLength": root.content_length,
        }

    @staticmethod
    def to_dict(manifest: StoryManifest) -> Dict:
        """
        Manifest in its persisted/transmitted JSON shape.

        Args:
            manifest: StoryManifest object

        Returns:
            Dict with camelCase keys; ``chunks`` lists content references
        """
        manifest_dict = ManifestManager.root_to_dict(manifest.root)
        manifest_dict["hashListChunks"] = list(manifest.hash_list_refs)
        manifest_dict["chunks"] = list(manifest.chunk_refs)
        if manifest.manifest_ref is not None:
            manifest_dict["manifestRef"] = manifest.manifest_ref
        return manifest_dict

    @staticmethod
    def root_from_dict(manifest_dict: Dict) -> ManifestRoot:
        try:
            return ManifestRoot(
                story_id=manifest_dict["storyId"],
                title=manifest_dict["title"],
                author=manifest_dict["author"],
                author_public_key=manifest_dict["authorPublicKey"],
                total_chunks=int(manifest_dict["totalChunks"]),
                total_hash_list_chunks=int(manifest_dict["totalHashListChunks"]),
                timestamp=datetime.fromisoformat(manifest_dict["timestamp"]),
                manifest_root_hash=manifest_dict["manifestRootHash"],
                hash_list_digests=tuple(manifest_dict["hashListDigests"]),
                compression=manifest_dict.get("compression", "deflate"),
                chunk_size=int(manifest_dict.get("chunkSize", 0)),
                content_length=int(manifest_dict.get("contentLength", 0)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ManifestError(f"Invalid manifest: {e}") from e

    @staticmethod
    def from_dict(manifest_dict: Dict) -> StoryManifest:
        """
        Rebuild a StoryManifest from its JSON shape.

        Raises:
            ManifestError: If required fields are missing or mistyped
        """
        root = ManifestManager.root_from_dict(manifest_dict)
        try:
            hash_list_refs = list(manifest_dict["hashListChunks"])
            chunk_refs = list(manifest_dict["chunks"])
        except (KeyError, TypeError) as e:
            raise ManifestError(f"Manifest has no chunk references: {e}") from e
        return StoryManifest(
            root=root,
            hash_list_refs=hash_list_refs,
            chunk_refs=chunk_refs,
            manifest_ref=manifest_dict.get("manifestRef"),
        )

    @staticmethod
    def to_json(manifest: StoryManifest) -> str:
        return json.dumps(ManifestManager.to_dict(manifest), indent=2)

    @staticmethod
    def from_json(json_string: str) -> StoryManifest:
        try:
            manifest_dict = json.loads(json_string)
        except json.JSONDecodeError as e:
            raise ManifestError(f"Invalid manifest JSON: {e}") from e
        return ManifestManager.from_dict(manifest_dict)

    @staticmethod
    def validate_root(root: ManifestRoot) -> List[str]:
        """
        Validate manifest root invariants.

        Returns:
            List of error messages (empty if all valid)
        """
        errors = []

        if not is_story_id(root.story_id):
            errors.append(f"Invalid story id: {root.story_id!r}")
        if not root.title.strip():
            errors.append("Title is required")
        if not root.author_public_key.strip():
            errors.append("Author public key is required")
        if root.total_chunks <= 0:
            errors.append("Total content chunks must be greater than 0")
        if root.total_hash_list_chunks <= 0:
            errors.append("Total hash list chunks must be greater than 0")
        if len(root.hash_list_digests) != root.total_hash_list_chunks:
            errors.append(
                f"{len(root.hash_list_digests)} hash list digests for "
                f"{root.total_hash_list_chunks} hash list chunks"
            )
        if not is_hex_digest(root.manifest_root_hash):
            errors.append(f"Invalid manifest root hash format: {root.manifest_root_hash!r}")
        for digest in root.hash_list_digests:
            if not is_hex_digest(digest):
                errors.append(f"Invalid hash list digest format: {digest!r}")
                break
        if root.compression not in ("deflate", "zstd", "none"):
            errors.append(f"Unknown compression method: {root.compression!r}")

        return errors

    @staticmethod
    def validate(manifest: StoryManifest) -> List[str]:
        errors = ManifestManager.validate_root(manifest.root)
        if len(manifest.chunk_refs) != manifest.root.total_chunks:
            errors.append(
                f"{len(manifest.chunk_refs)} chunk references for "
                f"{manifest.root.total_chunks} chunks"
            )
        if len(manifest.hash_list_refs) != manifest.root.total_hash_list_chunks:
            errors.append(
                f"{len(manifest.hash_list_refs)} hash list references for "
                f"{manifest.root.total_hash_list_chunks} hash list chunks"
            )
        return errors

    @staticmethod
    def check_root_commitment(root: ManifestRoot, hasher: Optional[Hasher] = None):
        """
        Check manifest_root_hash against the listed hash-list digests.

        Raises:
            IntegrityError: If the commitment does not match
        """
        hasher = hasher or Hasher()
        actual = hasher.hash_many(root.hash_list_digests)
        if actual != root.manifest_root_hash:
            raise IntegrityError(
                f"Manifest root hash mismatch for {root.story_id}: "
                f"expected {root.manifest_root_hash[:16]}..., got {actual[:16]}..."
            )

    # Ledger encoding

    @staticmethod
    def encode_root(manifest: StoryManifest, ref_index: Optional[List[str]] = None,
                    ref_index_digest: Optional[str] = None) -> bytes:
        """
        Deflated root JSON for the manifest transaction.

        With ``ref_index`` the reference lists are replaced by the
        references of the spilled index chunks.
        """
        manifest_dict = ManifestManager.root_to_dict(manifest.root)
        if ref_index is None:
            manifest_dict["hashListChunks"] = list(manifest.hash_list_refs)
            manifest_dict["chunks"] = list(manifest.chunk_refs)
        else:
            manifest_dict["refIndex"] = list(ref_index)
            manifest_dict["refIndexDigest"] = ref_index_digest
        raw = json.dumps(manifest_dict, separators=(",", ":")).encode("utf-8")
        return compress_data(raw, "deflate", 9)

    @staticmethod
    def decode_root(data: bytes) -> DecodedRoot:
        """
        Parse a manifest transaction's data.

        Raises:
            CodecError: If the data does not inflate to JSON
            ManifestError: If the JSON is not a manifest
        """
        raw = decompress_data(data, "deflate")
        try:
            manifest_dict = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise CodecError(f"Manifest root is not JSON: {e}") from e
        if not isinstance(manifest_dict, dict):
            raise ManifestError("Manifest root is not a JSON object")

        root = ManifestManager.root_from_dict(manifest_dict)
        if "refIndex" in manifest_dict:
            return DecodedRoot(
                root=root,
                hash_list_refs=None,
                chunk_refs=None,
                ref_index=list(manifest_dict["refIndex"]),
                ref_index_digest=manifest_dict.get("refIndexDigest"),
            )
        try:
            return DecodedRoot(
                root=root,
                hash_list_refs=list(manifest_dict["hashListChunks"]),
                chunk_refs=list(manifest_dict["chunks"]),
            )
        except (KeyError, TypeError) as e:
            raise ManifestError(f"Manifest root has no chunk references: {e}") from e

    @staticmethod
    def encode_ref_index(manifest: StoryManifest) -> bytes:
        raw = json.dumps(
            {"hashListChunks": manifest.hash_list_refs, "chunks": manifest.chunk_refs},
            separators=(",", ":"),
        ).encode("utf-8")
        return compress_data(raw, "deflate", 9)

    @staticmethod
    def decode_ref_index(data: bytes) -> Tuple[List[str], List[str]]:
        raw = decompress_data(data, "deflate")
        try:
            index = json.loads(raw.decode("utf-8"))
            return list(index["hashListChunks"]), list(index["chunks"])
        except (UnicodeDecodeError, json.JSONDecodeError, KeyError, TypeError) as e:
            raise CodecError(f"Reference index is malformed: {e}") from e
