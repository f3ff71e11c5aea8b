"""Coloring-page prompt templates for the image edit API.

The coloring-page form offers a small, discrete set of options: the page
type, the background, an optional name or message, and one optional label per
photo (a person's name for facial portraits, an activity for cartoon
portraits).  Each reachable combination of those options maps to one fixed
natural-language template.

Facets
------
The template is selected by a :class:`TemplateKey` built from five facets:

========================  ====================================================
Facet                     Meaning
========================  ====================================================
``page_type``             ``straight-copy``, ``facial-portrait`` or
                          ``cartoon-portrait``
``background``            ``plain``, ``mindful-pattern`` or ``scene``
                          (``*`` where the page type ignores it)
``has_message``           the name/message field is not blank
``multiple``              more than one photo (one label slot per photo)
``has_labels``            at least one usable per-photo label
========================  ====================================================

Facets a page type does not use are pinned to a fixed value so that every
key in :data:`_TEMPLATES` is distinct:

- ``straight-copy`` only varies on ``has_message``.
- ``facial-portrait`` varies on ``background`` (plain, mindful-pattern),
  ``has_message`` and ``multiple``; the per-photo names are interpolated
  into the multi-photo templates but never change the wording otherwise.
- ``cartoon-portrait`` varies on every facet.  With a ``scene`` background
  only ``multiple`` and ``has_labels`` matter and the message is not drawn.

Combinations without a table entry (an unknown page type, a facial portrait
on a scene, a scene background without a description) produce
:data:`FALLBACK_PROMPT`.  :func:`generate_prompt` never raises.

Usage
-----
::

    prompt = generate_prompt(
        "cartoon-portrait",
        "",
        ["soccer"],
        "scene",
        "at the beach",
    )
"""

from __future__ import annotations

from typing import NamedTuple

STRAIGHT_COPY = "straight-copy"
FACIAL_PORTRAIT = "facial-portrait"
CARTOON_PORTRAIT = "cartoon-portrait"
PAGE_TYPES = (STRAIGHT_COPY, FACIAL_PORTRAIT, CARTOON_PORTRAIT)

PLAIN = "plain"
MINDFUL_PATTERN = "mindful-pattern"
SCENE = "scene"

# Backgrounds the form offers for each page type.
BACKGROUNDS_BY_TYPE: dict[str, tuple[str, ...]] = {
    STRAIGHT_COPY: (PLAIN,),
    FACIAL_PORTRAIT: (PLAIN, MINDFUL_PATTERN),
    CARTOON_PORTRAIT: (PLAIN, MINDFUL_PATTERN, SCENE),
}

# Maximum number of photos accepted per page type.
MAX_PHOTOS: dict[str, int] = {
    STRAIGHT_COPY: 1,
    FACIAL_PORTRAIT: 4,
    CARTOON_PORTRAIT: 4,
}

PORTRAIT_SIZE = "1024x1536"
LANDSCAPE_SIZE = "1536x1024"

ANY = "*"

FALLBACK_PROMPT = (
    "turn the attached photo into a line drawing suitable for a coloring page, "
    "ensuring accurate facial features are maintained"
)


class TemplateKey(NamedTuple):
    """Facet tuple that selects one template."""

    page_type: str
    background: str
    has_message: bool
    multiple: bool
    has_labels: bool


# ---------------------------------------------------------------------------
# Shared sentence fragments.  Every template is a plain concatenation of these.
# ---------------------------------------------------------------------------

_PHOTO = (
    "turn the attached photo into a line drawing suitable for a coloring page, "
    "ensuring accurate facial features are maintained. "
)
_ONE_FACE = (
    "turn the face from the attached photo into a line drawing suitable for a coloring page, "
    "ensuring accurate facial features are maintained. "
)
_MANY_FACES = (
    "turn the faces from the attached {count} photos into line drawings suitable for a "
    "coloring page, ensuring accurate facial features are maintained. "
)
_BOXED_ONE = (
    "place the result, as large as possible whilst still looking elegant, "
    "inside a plain white box with a black outline."
)
_BOXED_MANY = "place each result inside its own plain white box with a black outline.{names}"
_BODY_ONE = "place the result onto a cartoon style line drawing body in the same coloring page style"
_BODY_MANY = "place each result onto a cartoon style line drawing body in the same coloring page style"
_LETTERING = "in friendly white letters with black outline"
_ON_PLAIN = "on a plain white background"
_ON_PATTERN = "on top of an abstract pattern suitable for mindful coloring"
_CENTERED_LARGE = (
    "as large as possible whilst still looking elegant, centered horizontally and vertically "
)
_FINALLY_CENTERED = "finally place this collection of objects " + _CENTERED_LARGE


def _cartoon_many(ground: str) -> dict[tuple[bool, bool], str]:
    """Multi-photo cartoon templates for one background, keyed by (message, labels)."""
    return {
        (False, True): (
            _MANY_FACES + _BODY_MANY + ", with {activities}. show all entire figures. "
            "arrange them elegantly " + ground
        ),
        (True, True): (
            _MANY_FACES + _BODY_MANY + ", with {activities}. show all entire figures. "
            "write {message} " + _LETTERING + " somewhere unobtrusive. "
            "arrange everything elegantly " + ground
        ),
        (False, False): (
            _MANY_FACES + _BODY_MANY + ". show all entire figures. "
            "arrange them elegantly " + ground
        ),
        (True, False): (
            _MANY_FACES + _BODY_MANY + ". show all entire figures. "
            "write {message} " + _LETTERING + " somewhere unobtrusive. "
            "arrange everything elegantly " + ground
        ),
    }


_TEMPLATES: dict[TemplateKey, str] = {
    # --- straight-copy -----------------------------------------------------
    TemplateKey(STRAIGHT_COPY, ANY, False, False, False): (
        _PHOTO + "place the result, as large as possible whilst still looking elegant, "
        "centered vertically and horizontally " + _ON_PLAIN
    ),
    TemplateKey(STRAIGHT_COPY, ANY, True, False, False): (
        _PHOTO + "write {message} " + _LETTERING + ", suited to a coloring page. "
        "place the writing unobtrusively on top of the line drawing, ensuring it doesn't "
        "obscure the subject's face. finally center the whole thing, as large as possible "
        "whilst still looking elegant, " + _ON_PLAIN + "."
    ),
    # --- facial-portrait, plain --------------------------------------------
    TemplateKey(FACIAL_PORTRAIT, PLAIN, False, False, False): (
        _ONE_FACE + _BOXED_ONE + " center this horizontally and vertically " + _ON_PLAIN
    ),
    TemplateKey(FACIAL_PORTRAIT, PLAIN, False, True, False): (
        _MANY_FACES + _BOXED_MANY + " arrange all boxes elegantly " + _ON_PLAIN
    ),
    TemplateKey(FACIAL_PORTRAIT, PLAIN, True, False, False): (
        _ONE_FACE + _BOXED_ONE + " below this box write {message} " + _LETTERING
        + ", suited to a coloring page. center this collection of objects horizontally "
        "and vertically " + _ON_PLAIN
    ),
    TemplateKey(FACIAL_PORTRAIT, PLAIN, True, True, False): (
        _MANY_FACES + _BOXED_MANY + " arrange all boxes elegantly and write {message} "
        + _LETTERING + " somewhere unobtrusive " + _ON_PLAIN
    ),
    # --- facial-portrait, mindful-pattern ----------------------------------
    TemplateKey(FACIAL_PORTRAIT, MINDFUL_PATTERN, False, False, False): (
        _ONE_FACE + _BOXED_ONE + " center this collection of objects horizontally and "
        "vertically " + _ON_PATTERN
    ),
    TemplateKey(FACIAL_PORTRAIT, MINDFUL_PATTERN, False, True, False): (
        _MANY_FACES + _BOXED_MANY + " arrange all boxes elegantly " + _ON_PATTERN
    ),
    TemplateKey(FACIAL_PORTRAIT, MINDFUL_PATTERN, True, False, False): (
        _ONE_FACE + _BOXED_ONE + " below this box write {message} " + _LETTERING
        + ", suited to a coloring page. center this collection of objects horizontally "
        "and vertically " + _ON_PATTERN
    ),
    TemplateKey(FACIAL_PORTRAIT, MINDFUL_PATTERN, True, True, False): (
        _MANY_FACES + _BOXED_MANY + " arrange all boxes elegantly and write {message} "
        + _LETTERING + " somewhere unobtrusive " + _ON_PATTERN
    ),
    # --- cartoon-portrait, single photo, plain -----------------------------
    TemplateKey(CARTOON_PORTRAIT, PLAIN, False, False, False): (
        _ONE_FACE + _BODY_ONE + ". place this result as large as possible whilst still "
        "showing the entire figure, centered horizontally and vertically " + _ON_PLAIN
    ),
    TemplateKey(CARTOON_PORTRAIT, PLAIN, True, False, False): (
        _ONE_FACE + _BODY_ONE + ". show the entire body. below this write {message} "
        + _LETTERING + ", suited to a coloring page. " + _FINALLY_CENTERED + _ON_PLAIN
    ),
    TemplateKey(CARTOON_PORTRAIT, PLAIN, False, False, True): (
        _ONE_FACE + _BODY_ONE + " engaged in {activities}. show the entire figure. "
        "place this result " + _CENTERED_LARGE + _ON_PLAIN
    ),
    TemplateKey(CARTOON_PORTRAIT, PLAIN, True, False, True): (
        _ONE_FACE + _BODY_ONE + " engaged in {activities}. show the entire figure. "
        "below this write {message} " + _LETTERING + ", suited to a coloring page. "
        + _FINALLY_CENTERED + _ON_PLAIN
    ),
    # --- cartoon-portrait, single photo, mindful-pattern -------------------
    TemplateKey(CARTOON_PORTRAIT, MINDFUL_PATTERN, False, False, False): (
        _ONE_FACE + _BODY_ONE + ". show the entire figure. place this result "
        + _CENTERED_LARGE + _ON_PATTERN
    ),
    TemplateKey(CARTOON_PORTRAIT, MINDFUL_PATTERN, True, False, False): (
        _ONE_FACE + _BODY_ONE + ". show the entire figure. below this write {message} "
        + _LETTERING + ", suited to a coloring page. " + _FINALLY_CENTERED + _ON_PATTERN
    ),
    TemplateKey(CARTOON_PORTRAIT, MINDFUL_PATTERN, False, False, True): (
        _ONE_FACE + _BODY_ONE + " engaged in {activities}. show the entire figure. "
        "place this result " + _CENTERED_LARGE + _ON_PATTERN
    ),
    TemplateKey(CARTOON_PORTRAIT, MINDFUL_PATTERN, True, False, True): (
        _ONE_FACE + _BODY_ONE + " engaged in {activities}. show the entire figure. "
        "below this write {message} " + _LETTERING + ", suited to a coloring page. "
        + _FINALLY_CENTERED + _ON_PATTERN
    ),
    # --- cartoon-portrait, scene (message is not drawn) --------------------
    TemplateKey(CARTOON_PORTRAIT, SCENE, False, False, True): (
        _ONE_FACE + _BODY_ONE + " engaged in {activities}. show the entire figure. "
        "place the result in a way that makes sense in a {scene} background"
    ),
    TemplateKey(CARTOON_PORTRAIT, SCENE, False, False, False): (
        _ONE_FACE + _BODY_ONE + ". show the entire figure. "
        "place the result in a way that makes sense in a {scene} background"
    ),
    TemplateKey(CARTOON_PORTRAIT, SCENE, False, True, True): (
        _MANY_FACES + _BODY_MANY + ", with {activities}. show all entire figures arranged "
        "in a way that makes sense in a {scene} background"
    ),
    TemplateKey(CARTOON_PORTRAIT, SCENE, False, True, False): (
        _MANY_FACES + _BODY_MANY + ". show all entire figures arranged in a way that makes "
        "sense in a {scene} background"
    ),
}

# --- cartoon-portrait, multiple photos, plain / mindful-pattern ------------
for _background, _ground in ((PLAIN, _ON_PLAIN), (MINDFUL_PATTERN, _ON_PATTERN)):
    for (_has_message, _has_labels), _template in _cartoon_many(_ground).items():
        _TEMPLATES[TemplateKey(CARTOON_PORTRAIT, _background, _has_message, True, _has_labels)] = (
            _template
        )

TEMPLATE_KEYS: tuple[TemplateKey, ...] = tuple(_TEMPLATES)


def _names_clause(labels: list[str]) -> str:
    """Facial-portrait clause naming the box drawn from each photo."""
    if len(labels) <= 1:
        return ""
    parts = [
        f"below the box from photo {index} write {name}"
        for index, name in enumerate(labels, start=1)
        if name.strip()
    ]
    if not parts:
        return ""
    return f" {', '.join(parts)} {_LETTERING}."


def _activities_phrase(labels: list[str]) -> str:
    """Cartoon-portrait activity text; empty when no activity was given."""
    if len(labels) > 1:
        if not any(label.strip() for label in labels):
            return ""
        return ", ".join(
            f"the figure from photo {index} engaged in {label}"
            if label.strip()
            else f"the figure from photo {index}"
            for index, label in enumerate(labels, start=1)
        )
    if labels and labels[0].strip():
        return labels[0]
    return ""


def prompt_facets(
    page_type: str,
    name_or_message: str,
    individual_labels: list[str],
    background: str,
    scene_description: str | None = None,
) -> TemplateKey | None:
    """Resolve the facet tuple for a coloring-page request.

    Returns:
        The :class:`TemplateKey` for the request, or ``None`` when the
        combination has no template (generic fallback).
    """
    labels = list(individual_labels or [])
    has_message = bool((name_or_message or "").strip())
    multiple = len(labels) > 1

    if page_type == STRAIGHT_COPY:
        return TemplateKey(STRAIGHT_COPY, ANY, has_message, False, False)

    if page_type == FACIAL_PORTRAIT:
        return TemplateKey(FACIAL_PORTRAIT, background, has_message, multiple, False)

    if page_type == CARTOON_PORTRAIT:
        has_labels = bool(_activities_phrase(labels))
        if background == SCENE:
            if not (scene_description or "").strip():
                return None
            return TemplateKey(CARTOON_PORTRAIT, SCENE, False, multiple, has_labels)
        return TemplateKey(CARTOON_PORTRAIT, background, has_message, multiple, has_labels)

    return None


def generate_prompt(
    page_type: str,
    name_or_message: str,
    individual_labels: list[str],
    background: str,
    scene_description: str | None = None,
) -> str:
    """Build the image-edit prompt for a coloring-page request.

    Args:
        page_type: ``straight-copy``, ``facial-portrait`` or ``cartoon-portrait``.
        name_or_message: Text to letter onto the page; blank to omit.
        individual_labels: One slot per photo.  Person names for facial
            portraits, activities for cartoon portraits.  Empty slots are
            allowed.
        background: ``plain``, ``mindful-pattern`` or ``scene``.
        scene_description: Scene text, used only for cartoon portraits on a
            ``scene`` background.

    Returns:
        A non-empty prompt string.  Supplied text is interpolated verbatim.
    """
    labels = list(individual_labels or [])
    key = prompt_facets(page_type, name_or_message, labels, background, scene_description)
    template = _TEMPLATES.get(key) if key is not None else None
    if template is None:
        return FALLBACK_PROMPT

    return template.format(
        message=name_or_message,
        count=len(labels),
        names=_names_clause(labels),
        activities=_activities_phrase(labels),
        scene=scene_description or "",
    )


def size_for_orientation(orientation: str | None) -> str:
    """Return the canvas size for a page orientation (portrait by default)."""
    if orientation == "landscape":
        return LANDSCAPE_SIZE
    return PORTRAIT_SIZE
