"""File based specification storage.

Specs are markdown files with a frontmatter block, laid out as
``<root>/.specgen/specs/<feature_group>/SPEC-<id>-<slug>.md``. A JSON index
(``specs-metadata.json``) holds the next free id and per-spec metadata.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .analyzer import detect_feature_group, detect_priority, detect_theme_category
from .config import DEFAULT_STORAGE_DIR
from .errors import SpecNotFoundError, StoreError
from .models import SpecRecord, utc_timestamp
from .relationships import extract_keywords
from .specgen_logging import log_error_with_context, log_performance

logger = logging.getLogger("specgen.store")

METADATA_FILENAME = "specs-metadata.json"
METADATA_VERSION = "1.0"
FRONTMATTER_DELIMITER = "---"
FRONTMATTER_FIELDS = (
    "id", "title", "status", "feature_group", "theme_category", "priority",
    "created_at", "updated_at", "created_via", "related_specs", "parent_spec_id", "tags",
)
UPDATABLE_FIELDS = frozenset({
    "body_md", "title", "status", "feature_group", "theme_category", "priority",
    "related_specs", "parent_spec_id", "tags",
})
TAG_KEYWORDS = ("api", "database", "frontend", "backend", "security", "performance")
MAX_TAGS = 10

_HASHTAG_PATTERN = re.compile(r"#(\w+)")
_FRONTMATTER_LINE_PATTERN = re.compile(r"^(\w+):\s*(.*)$")

_UNSET = object()


def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")[:50]
    return slug or "spec"


def extract_tags(body: str) -> List[str]:
    """Hashtags in the body plus a few well known technical words."""
    tags = [match.lower() for match in _HASHTAG_PATTERN.findall(body)]
    lowered = body.lower()
    tags.extend(keyword for keyword in TAG_KEYWORDS if keyword in lowered)
    return list(dict.fromkeys(tags))[:MAX_TAGS]


def build_markdown(record: SpecRecord) -> str:
    """Serialize a record as frontmatter followed by the untouched body."""
    data = record.to_dict(include_body=False)
    lines = [FRONTMATTER_DELIMITER]
    lines.extend(f"{name}: {json.dumps(data[name])}" for name in FRONTMATTER_FIELDS)
    lines.append(FRONTMATTER_DELIMITER)
    return "\n".join(lines) + "\n\n" + record.body_md


def parse_markdown(content: str) -> SpecRecord:
    """Inverse of :func:`build_markdown`."""
    if not content.startswith(FRONTMATTER_DELIMITER + "\n"):
        raise ValueError("Content does not have frontmatter")

    end = content.find("\n" + FRONTMATTER_DELIMITER + "\n", len(FRONTMATTER_DELIMITER))
    if end == -1:
        raise ValueError("Invalid frontmatter format")

    data: Dict[str, Any] = {}
    for line in content[len(FRONTMATTER_DELIMITER) + 1:end].splitlines():
        match = _FRONTMATTER_LINE_PATTERN.match(line)
        if not match:
            continue
        key, raw = match.groups()
        try:
            data[key] = json.loads(raw) if raw else None
        except json.JSONDecodeError:
            data[key] = raw

    body = content[end + len(FRONTMATTER_DELIMITER) + 2:]
    if body.startswith("\n"):
        body = body[1:]
    data["body_md"] = body
    return SpecRecord.from_dict(data)


class FileSpecStore:
    """Async spec store backed by markdown files.

    File and index I/O is synchronous, so within one event loop a single
    instance never interleaves two writes. Update and delete also take an
    ``asyncio.Lock`` keyed by spec id and the index has its own lock; these
    only serialize callers that share the instance. The MCP server keeps
    one store per project root. Nothing guards against other processes
    writing the same files.
    """

    def __init__(self, root: Path | str, storage_dir: str = DEFAULT_STORAGE_DIR):
        self.root = Path(root).resolve()
        self.base_dir = self.root / storage_dir
        self.specs_dir = self.base_dir / "specs"
        self.metadata_path = self.base_dir / METADATA_FILENAME
        self._spec_locks: Dict[int, asyncio.Lock] = {}
        self._metadata_lock = asyncio.Lock()

        try:
            self.specs_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Failed to create storage directories: {e}")
            raise StoreError(f"Could not initialize spec storage at {self.base_dir}: {e}", str(self.base_dir)) from e

        logger.debug(f"Spec store initialized at {self.base_dir}")

    # ------------------------------------------------------------------
    # Metadata index
    # ------------------------------------------------------------------

    def _empty_metadata(self) -> Dict[str, Any]:
        now = utc_timestamp()
        return {
            "version": METADATA_VERSION,
            "created_at": now,
            "updated_at": now,
            "next_id": 1,
            "specs": {},
        }

    def _load_metadata(self) -> Dict[str, Any]:
        if not self.metadata_path.exists():
            return self._empty_metadata()
        try:
            return json.loads(self.metadata_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise StoreError(f"Failed to read metadata index: {e}", str(self.metadata_path)) from e

    def _save_metadata(self, metadata: Dict[str, Any]) -> None:
        metadata["updated_at"] = utc_timestamp()
        try:
            self.metadata_path.write_text(json.dumps(metadata, indent=2), encoding="utf-8")
        except OSError as e:
            raise StoreError(f"Failed to write metadata index: {e}", str(self.metadata_path)) from e

    def _index_entry(self, record: SpecRecord, path: Path, markdown: str) -> Dict[str, Any]:
        return {
            "id": record.id,
            "title": record.title,
            "status": record.status,
            "feature_group": record.feature_group,
            "theme_category": record.theme_category,
            "priority": record.priority,
            "file_path": str(path.relative_to(self.base_dir)),
            "file_size": len(markdown),
            "checksum": hashlib.sha256(markdown.encode("utf-8")).hexdigest(),
            "created_at": record.created_at,
            "updated_at": record.updated_at,
        }

    def _lock_for(self, spec_id: int) -> asyncio.Lock:
        lock = self._spec_locks.get(spec_id)
        if lock is None:
            lock = self._spec_locks[spec_id] = asyncio.Lock()
        return lock

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def spec_path(self, record: SpecRecord) -> Path:
        filename = f"SPEC-{record.id:03d}-{slugify(record.title)}.md"
        return self.specs_dir / record.feature_group / filename

    def _write_spec(self, record: SpecRecord) -> Tuple[Path, str]:
        path = self.spec_path(record)
        markdown = build_markdown(record)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(markdown, encoding="utf-8")
        except OSError as e:
            raise StoreError(f"Failed to write spec {record.id}: {e}", str(path)) from e
        return path, markdown

    def _read_spec(self, entry: Dict[str, Any]) -> Optional[SpecRecord]:
        path = self.base_dir / entry["file_path"]
        if not path.exists():
            logger.warning(f"Spec {entry['id']} is indexed but {path} is missing")
            return None
        try:
            return parse_markdown(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise StoreError(f"Failed to read spec {entry['id']}: {e}", str(path)) from e

    def _remove_file(self, path: Path) -> None:
        try:
            path.unlink()
            if path.parent != self.specs_dir and not any(path.parent.iterdir()):
                path.parent.rmdir()
        except OSError as e:
            logger.warning(f"Failed to remove old spec file {path}: {e}")

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    @log_performance("create_spec")
    async def create_spec(
        self,
        title: str,
        body_md: str,
        *,
        status: str = "draft",
        feature_group: Optional[str] = None,
        theme_category: Optional[str] = None,
        priority: Optional[str] = None,
        related_specs: Optional[List[int]] = None,
        parent_spec_id: Optional[int] = None,
        created_via: str = "manual",
        tags: Optional[List[str]] = None,
    ) -> SpecRecord:
        """Store a new spec; missing metadata is detected from the content."""
        if not title or not title.strip():
            raise ValueError("Spec title cannot be empty")

        group = feature_group or detect_feature_group(title, body_md)
        async with self._metadata_lock:
            metadata = self._load_metadata()
            spec_id = int(metadata["next_id"])
            record = SpecRecord(
                id=spec_id,
                title=title.strip(),
                body_md=body_md,
                status=status,
                feature_group=group,
                theme_category=theme_category or detect_theme_category(group, body_md),
                priority=priority or detect_priority(title, body_md),
                created_via=created_via,
                related_specs=list(related_specs or []),
                parent_spec_id=parent_spec_id,
                tags=list(tags) if tags is not None else extract_tags(body_md),
            )
            issues = record.validate()
            if issues:
                raise ValueError("; ".join(issues))

            path, markdown = self._write_spec(record)
            metadata["specs"][str(spec_id)] = self._index_entry(record, path, markdown)
            metadata["next_id"] = spec_id + 1
            try:
                self._save_metadata(metadata)
            except StoreError:
                self._remove_file(path)
                raise

        logger.info(f"Created spec {spec_id} at {path}")
        return record

    async def get_spec_by_id(self, spec_id: int) -> Optional[SpecRecord]:
        """Return the spec or ``None`` when it does not exist."""
        metadata = self._load_metadata()
        entry = metadata["specs"].get(str(spec_id))
        if entry is None:
            return None
        return self._read_spec(entry)

    async def update_spec(self, spec_id: int, updates: Dict[str, Any]) -> SpecRecord:
        """Apply ``updates`` to a stored spec.

        The file moves when the feature group or title changes. Keys outside
        the updatable fields are ignored. Raises :class:`SpecNotFoundError`
        for unknown ids.
        """
        async with self._lock_for(spec_id):
            async with self._metadata_lock:
                metadata = self._load_metadata()
                entry = metadata["specs"].get(str(spec_id))
                if entry is None:
                    raise SpecNotFoundError(f"Spec {spec_id} not found", spec_id)

                record = self._read_spec(entry)
                if record is None:
                    raise SpecNotFoundError(f"Spec {spec_id} file is missing", spec_id)

                ignored = set(updates) - UPDATABLE_FIELDS
                if ignored:
                    logger.debug(f"Ignoring unsupported update fields for spec {spec_id}: {sorted(ignored)}")

                for name, value in updates.items():
                    if name not in UPDATABLE_FIELDS:
                        continue
                    if name == "related_specs":
                        value = [int(item) for item in value or []]
                    elif name == "tags":
                        value = list(value or [])
                    setattr(record, name, value)
                record.updated_at = utc_timestamp()

                issues = record.validate()
                if issues:
                    raise ValueError("; ".join(issues))

                old_path = self.base_dir / entry["file_path"]
                try:
                    path, markdown = self._write_spec(record)
                    new_entry = self._index_entry(record, path, markdown)
                    new_entry["created_at"] = entry.get("created_at", record.created_at)
                    metadata["specs"][str(spec_id)] = new_entry
                    try:
                        self._save_metadata(metadata)
                    except StoreError:
                        # The index still points at the old file; drop the new copy.
                        if path != old_path:
                            self._remove_file(path)
                        raise
                except StoreError as e:
                    log_error_with_context(e, {"operation": "update_spec", "spec_id": spec_id})
                    raise

                if path != old_path:
                    self._remove_file(old_path)

        logger.debug(f"Updated spec {spec_id}: {sorted(set(updates) & UPDATABLE_FIELDS)}")
        return record

    async def delete_spec(self, spec_id: int) -> Dict[str, Any]:
        """Drop a spec from the index and remove its file.

        Returns the removed index entry. Other specs that reference the id in
        ``related_specs`` or ``parent_spec_id`` are left as they are.
        """
        async with self._lock_for(spec_id):
            async with self._metadata_lock:
                metadata = self._load_metadata()
                entry = metadata["specs"].pop(str(spec_id), None)
                if entry is None:
                    raise SpecNotFoundError(f"Spec {spec_id} not found", spec_id)
                self._save_metadata(metadata)

                path = self.base_dir / entry["file_path"]
                if path.exists():
                    self._remove_file(path)

        logger.info(f"Deleted spec {spec_id} ({entry['file_path']})")
        return entry

    async def list_specs(
        self,
        feature_group: Optional[str] = None,
        status: Optional[str] = None,
    ) -> List[SpecRecord]:
        """All stored specs in id order, optionally filtered."""
        metadata = self._load_metadata()
        records = []
        for entry in sorted(metadata["specs"].values(), key=lambda item: int(item["id"])):
            if feature_group and entry.get("feature_group") != feature_group:
                continue
            if status and entry.get("status") != status:
                continue
            record = self._read_spec(entry)
            if record is not None:
                records.append(record)
        return records

    async def search_specs(self, query: str, limit: int = 10) -> List[Tuple[SpecRecord, float]]:
        """Rank specs by keyword overlap with ``query``.

        Title hits count twice as much as body hits. Specs with no overlap are
        left out.
        """
        query_keywords = set(extract_keywords(query))
        if not query_keywords:
            return []

        scored = []
        for record in await self.list_specs():
            title_hits = len(query_keywords & set(extract_keywords(record.title)))
            body_hits = len(query_keywords & set(extract_keywords(record.body_md)))
            score = (2 * title_hits + body_hits) / (3 * len(query_keywords))
            if score > 0:
                scored.append((record, score))

        scored.sort(key=lambda item: (-item[1], item[0].id))
        return scored[:max(limit, 0)]

    async def update_relationships(
        self,
        spec_id: int,
        related_specs: Optional[List[int]] = None,
        parent_spec_id: Any = _UNSET,
    ) -> SpecRecord:
        """Replace related ids and/or the parent id; ``parent_spec_id=None`` clears it.

        Ids are stored as given, without existence or cycle checks.
        """
        updates: Dict[str, Any] = {}
        if related_specs is not None:
            updates["related_specs"] = related_specs
        if parent_spec_id is not _UNSET:
            updates["parent_spec_id"] = parent_spec_id
        return await self.update_spec(spec_id, updates)
