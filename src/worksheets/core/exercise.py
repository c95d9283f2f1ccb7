"""Exercise document model.

An exercise is an ordered list of pages, each holding an ordered list of
tools. This module owns the structural invariants:

- an exercise always has at least one page
- every page's ``index`` equals its position, every tool's ``index`` equals
  its position within its page
- ``unique_name`` is unique across the whole exercise and never regenerated
- nothing changes while the exercise is locked

Operations raise ``ExerciseError`` subclasses; the authoring session turns
them into user-facing warnings.
"""

from __future__ import annotations

import copy
import uuid
from dataclasses import dataclass, field
from typing import Any, Sequence, TypeVar

import structlog

from worksheets.core.tools import (
    MIN_MCQ_OPTIONS,
    Tool,
    ToolDefaults,
    ToolType,
    contract_for,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

# Page fields an author may patch directly; tools go through the tool operations
PAGE_PATCH_FIELDS = frozenset(
    {
        "display_text",
        "timer_seconds",
        "extraction_prompt",
        "display_images",
        "display_image_descriptions",
        "files",
    }
)

TOOL_UPDATE_FIELDS = frozenset(
    {"placeholder_text", "options", "chat_bot_instructions", "max_chat_count"}
)


# =============================================================================
# ERRORS
# =============================================================================


class ExerciseError(Exception):
    """Error mutating an exercise document."""

    pass


class ExerciseLockedError(ExerciseError):
    """Mutation attempted on a locked exercise."""

    def __init__(self, exercise_id: str | None = None):
        self.exercise_id = exercise_id
        super().__init__("Exercise is locked and cannot be edited")


class LastPageError(ExerciseError):
    """Deleting the only remaining page."""

    def __init__(self) -> None:
        super().__init__("Exercise must have at least one page")


class PageNotFoundError(ExerciseError):
    def __init__(self, page_index: int):
        self.page_index = page_index
        super().__init__(f"Page {page_index} does not exist")


class ToolNotFoundError(ExerciseError):
    def __init__(self, page_index: int, tool_ref: int | str):
        self.page_index = page_index
        self.tool_ref = tool_ref
        super().__init__(f"Tool {tool_ref!r} not found on page {page_index}")


class MinimumOptionsError(ExerciseError):
    """Removing an option would leave fewer than the minimum."""

    def __init__(self) -> None:
        super().__init__(f"At least {MIN_MCQ_OPTIONS} options are required")


class InvalidEditError(ExerciseError):
    """A patch or field update is not allowed."""

    pass


# =============================================================================
# ORDERED SEQUENCE HELPERS
# =============================================================================


def reindex(items: Sequence[Any]) -> None:
    """Set each item's ``index`` to its position."""
    for position, item in enumerate(items):
        item.index = position


def move_item(items: list[T], source: int, destination: int) -> None:
    """Remove the item at ``source`` and insert it at ``destination``.

    ``destination`` is a position in the list after removal, matching a
    drag-and-drop drop target.
    """
    if not 0 <= source < len(items):
        raise IndexError(f"source {source} out of range")
    if not 0 <= destination < len(items):
        raise IndexError(f"destination {destination} out of range")
    moved = items.pop(source)
    items.insert(destination, moved)


def generate_unique_name(tool_type: ToolType, taken: set[str]) -> str:
    """Fresh ``{type}_{8 hex}`` name not present in ``taken``."""
    while True:
        name = f"{tool_type.value.lower()}_{uuid.uuid4().hex[:8]}"
        if name not in taken:
            return name


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass
class Page:
    """One page of an exercise."""

    index: int = 0
    tools: list[Tool] = field(default_factory=list)
    display_images: list[str] = field(default_factory=list)
    display_image_descriptions: list[str | None] = field(default_factory=list)
    files: list[str] = field(default_factory=list)
    display_text: str = ""
    timer_seconds: int = 0
    extraction_prompt: str = ""

    def tool_at(self, tool_index: int) -> Tool:
        if not 0 <= tool_index < len(self.tools):
            raise ToolNotFoundError(self.index, tool_index)
        return self.tools[tool_index]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "index": self.index,
            "tools": [t.to_dict() for t in self.tools],
            "display_images": list(self.display_images),
            "display_image_descriptions": list(self.display_image_descriptions),
            "files": list(self.files),
            "display_text": self.display_text,
            "timer_seconds": self.timer_seconds,
            "extraction_prompt": self.extraction_prompt,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Page:
        images = list(data.get("display_images") or [])
        descriptions = list(data.get("display_image_descriptions") or [])
        # Keep descriptions parallel to images
        descriptions = (descriptions + [None] * len(images))[: len(images)]
        tools = [Tool.from_dict(t) for t in data.get("tools") or []]
        reindex(tools)
        return cls(
            index=int(data.get("index", 0)),
            tools=tools,
            display_images=images,
            display_image_descriptions=descriptions,
            files=list(data.get("files") or []),
            display_text=data.get("display_text") or "",
            timer_seconds=int(data.get("timer_seconds") or 0),
            extraction_prompt=data.get("extraction_prompt") or "",
        )


@dataclass
class Exercise:
    """An authored, multi-page exercise."""

    id: str | None = None
    activity_id: str | None = None
    pages: list[Page] = field(default_factory=lambda: [Page(index=0)])
    extraction_prompt: str = ""
    is_locked: bool = False

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def page_at(self, page_index: int) -> Page:
        if not 0 <= page_index < len(self.pages):
            raise PageNotFoundError(page_index)
        return self.pages[page_index]

    def unique_names(self) -> set[str]:
        return {t.unique_name for p in self.pages for t in p.tools}

    def find_tool(self, unique_name: str) -> tuple[Page, Tool] | None:
        for page in self.pages:
            for tool in page.tools:
                if tool.unique_name == unique_name:
                    return page, tool
        return None

    def _check_unlocked(self) -> None:
        if self.is_locked:
            raise ExerciseLockedError(self.id)

    # -------------------------------------------------------------------------
    # Pages
    # -------------------------------------------------------------------------

    def add_page(self) -> Page:
        """Append an empty page at the end."""
        self._check_unlocked()
        page = Page(index=len(self.pages))
        self.pages.append(page)
        return page

    def delete_page(self, page_index: int) -> None:
        """Remove a page and reindex the rest.

        Raises:
            LastPageError: If it is the only page
        """
        self._check_unlocked()
        self.page_at(page_index)
        if len(self.pages) <= 1:
            raise LastPageError()
        del self.pages[page_index]
        reindex(self.pages)

    def update_page(self, page_index: int, **patch: Any) -> Page:
        """Overwrite page-level fields (text, timer, prompt, assets)."""
        self._check_unlocked()
        page = self.page_at(page_index)
        unknown = set(patch) - PAGE_PATCH_FIELDS
        if unknown:
            raise InvalidEditError(f"Cannot patch page field(s): {', '.join(sorted(unknown))}")
        if "timer_seconds" in patch:
            seconds = patch["timer_seconds"]
            if isinstance(seconds, bool) or not isinstance(seconds, int) or seconds < 0:
                raise InvalidEditError("timer_seconds must be a non-negative integer")
        for name, value in patch.items():
            setattr(page, name, copy.deepcopy(value))
        if "display_images" in patch or "display_image_descriptions" in patch:
            if len(page.display_image_descriptions) != len(page.display_images):
                page.display_image_descriptions = (
                    list(page.display_image_descriptions) + [None] * len(page.display_images)
                )[: len(page.display_images)]
        return page

    # -------------------------------------------------------------------------
    # Page assets
    # -------------------------------------------------------------------------

    def add_display_images(
        self,
        page_index: int,
        asset_ids: Sequence[str],
        descriptions: Sequence[str | None] | None = None,
    ) -> None:
        self._check_unlocked()
        page = self.page_at(page_index)
        descriptions = list(descriptions or [])
        descriptions = (descriptions + [None] * len(asset_ids))[: len(asset_ids)]
        page.display_images.extend(asset_ids)
        page.display_image_descriptions.extend(descriptions)

    def remove_display_image(self, page_index: int, image_index: int) -> str:
        """Remove an image together with its description."""
        self._check_unlocked()
        page = self.page_at(page_index)
        if not 0 <= image_index < len(page.display_images):
            raise InvalidEditError(f"Image {image_index} does not exist")
        asset_id = page.display_images.pop(image_index)
        if image_index < len(page.display_image_descriptions):
            page.display_image_descriptions.pop(image_index)
        return asset_id

    def add_files(self, page_index: int, asset_ids: Sequence[str]) -> None:
        self._check_unlocked()
        self.page_at(page_index).files.extend(asset_ids)

    def remove_file(self, page_index: int, file_index: int) -> str:
        self._check_unlocked()
        page = self.page_at(page_index)
        if not 0 <= file_index < len(page.files):
            raise InvalidEditError(f"File {file_index} does not exist")
        return page.files.pop(file_index)

    # -------------------------------------------------------------------------
    # Tools
    # -------------------------------------------------------------------------

    def add_tool(
        self,
        page_index: int,
        tool_type: str | ToolType,
        defaults: ToolDefaults | None = None,
    ) -> Tool:
        """Append a new tool with type-appropriate defaults."""
        self._check_unlocked()
        page = self.page_at(page_index)
        kind = ToolType.parse(tool_type)
        if kind is None:
            raise InvalidEditError(f"Unknown tool type: {tool_type}")
        defaults = defaults or ToolDefaults()

        tool = Tool(
            tool_type=kind.value,
            unique_name=generate_unique_name(kind, self.unique_names()),
            index=len(page.tools),
            placeholder_text=defaults.placeholder_text,
            options=contract_for(kind).default_options(defaults),
            chat_bot_instructions=(
                defaults.chat_bot_instructions if kind == ToolType.CHAT_BOT else ""
            ),
            max_chat_count=None,
        )
        page.tools.append(tool)
        logger.debug("tool_added", page=page_index, tool_type=kind.value, unique_name=tool.unique_name)
        return tool

    def delete_tool(self, page_index: int, tool_index: int) -> Tool:
        self._check_unlocked()
        page = self.page_at(page_index)
        page.tool_at(tool_index)
        removed = page.tools.pop(tool_index)
        reindex(page.tools)
        return removed

    def update_tool(self, page_index: int, tool_index: int, field_name: str, value: Any) -> Tool:
        """Set one configurable field of a tool.

        ``unique_name``, ``index`` and ``tool_type`` are not editable.
        """
        self._check_unlocked()
        tool = self.page_at(page_index).tool_at(tool_index)
        if field_name not in TOOL_UPDATE_FIELDS:
            raise InvalidEditError(f"Tool field '{field_name}' cannot be edited")
        if field_name == "max_chat_count" and value is not None:
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise InvalidEditError("max_chat_count must be a positive integer or empty")
        if field_name == "options":
            if not isinstance(value, (list, tuple)):
                raise InvalidEditError("options must be a list of strings")
            value = [str(o) for o in value]
        setattr(tool, field_name, value)
        return tool

    def reorder_tools(self, page_index: int, source: int, destination: int) -> None:
        """Move a tool within its page and reindex that page."""
        self._check_unlocked()
        page = self.page_at(page_index)
        try:
            move_item(page.tools, source, destination)
        except IndexError as e:
            raise ToolNotFoundError(page_index, source) from e
        reindex(page.tools)

    # -------------------------------------------------------------------------
    # MCQ options
    # -------------------------------------------------------------------------

    def _mcq_tool(self, page_index: int, tool_index: int) -> Tool:
        tool = self.page_at(page_index).tool_at(tool_index)
        if tool.kind is None or not tool.kind.is_mcq:
            raise InvalidEditError(f"{tool.tool_type} tools have no options")
        return tool

    def add_option(self, page_index: int, tool_index: int, text: str = "") -> None:
        self._check_unlocked()
        self._mcq_tool(page_index, tool_index).options.append(text)

    def update_option(self, page_index: int, tool_index: int, option_index: int, text: str) -> None:
        self._check_unlocked()
        tool = self._mcq_tool(page_index, tool_index)
        if not 0 <= option_index < len(tool.options):
            raise InvalidEditError(f"Option {option_index} does not exist")
        tool.options[option_index] = text

    def remove_option(self, page_index: int, tool_index: int, option_index: int) -> str:
        """Remove an option, refused when only the minimum remain."""
        self._check_unlocked()
        tool = self._mcq_tool(page_index, tool_index)
        if not 0 <= option_index < len(tool.options):
            raise InvalidEditError(f"Option {option_index} does not exist")
        if len(tool.options) <= MIN_MCQ_OPTIONS:
            raise MinimumOptionsError()
        return tool.options.pop(option_index)

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "activity_id": self.activity_id,
            "pages": [p.to_dict() for p in self.pages],
            "extraction_prompt": self.extraction_prompt,
            "is_locked": self.is_locked,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Exercise:
        pages = [Page.from_dict(p) for p in data.get("pages") or []]
        if not pages:
            pages = [Page(index=0)]
        reindex(pages)
        return cls(
            id=data.get("id"),
            activity_id=data.get("activity_id"),
            pages=pages,
            extraction_prompt=data.get("extraction_prompt") or "",
            is_locked=bool(data.get("is_locked", False)),
        )

    def copy(self) -> Exercise:
        return copy.deepcopy(self)
