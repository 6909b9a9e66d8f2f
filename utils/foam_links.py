import re
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from posixpath import relpath as posix_relpath
from typing import Optional

# ---------------------------------------------------------------------------
# Foam-style link reference engine
# ---------------------------------------------------------------------------
#
# Reference syntax recognised in a page body:
#   [[page-name]]              -> reference link [page-name], definition appended
#   [[page-name|Display Text]] -> inline link [Display Text](relative/path)
#   ![[page-name]]             -> embed reference ![page-name]
#   #tag                       -> reference link [#tag] to tags/<tag>
#   @name                      -> reference link [@name] to mentions/<name>
#
# Every distinct reference gets exactly one definition line in a block that is
# appended to the page, so the output renders with any standard Markdown
# renderer:
#
#   [//begin]: # "Autogenerated link references for markdown compatibility"
#   [page-name]: ../notes/page-name "Page Title"
#   [#tag]: tags/tag "Tag: tag"
#   [//end]: # "Autogenerated link references"
#
# Resolution of [[target]]: the target's base name (directories and extension
# dropped) is compared with every corpus document's base name and declared
# slug; the first document in corpus order wins.  A target with no match keeps
# a placeholder definition pointing at its own text.
#
# Titles come from, in order: front-matter title, first "# " heading in the
# body, humanised file name.
# ---------------------------------------------------------------------------

# [[target]] or [[target|display text]]
WIKI_LINK_RE = re.compile(r"\[\[([^\]]+?)\]\]")

# ![[target]] or ![[target|alt text]]
WIKI_EMBED_RE = re.compile(r"!\[\[([^\]]+?)\]\]")

# #tag / @name: alphanumeric first character, then letters, digits, - and _.
# A word character or a second sigil directly before it (mail@host, issue#12,
# ##heading) means it is not a reference.
TAG_RE = re.compile(r"(?<![#\w])#([A-Za-z0-9][\w-]*)", re.ASCII)
MENTION_RE = re.compile(r"(?<![@\w])@([A-Za-z0-9][\w-]*)", re.ASCII)

H1_RE = re.compile(r"^#[ \t]+(.+)$", re.MULTILINE)

# Documents with these extensions take part in resolution
TEXT_EXTENSIONS = (".md", ".markdown")

DEFAULT_TAG_PREFIX = "tags/"
DEFAULT_MENTION_PREFIX = "mentions/"

BEGIN_MARKER = '[//begin]: # "Autogenerated link references for markdown compatibility"'
END_MARKER = '[//end]: # "Autogenerated link references"'


def is_text_path(path):
    """True if ``path`` ends with a recognised text (Markdown) extension."""
    return str(path).lower().endswith(TEXT_EXTENSIONS)


def strip_text_extension(path):
    lowered = path.lower()
    for ext in TEXT_EXTENSIONS:
        if lowered.endswith(ext):
            return path[: -len(ext)]
    return path


def humanise_stem(stem):
    """my_cool-note -> My cool note"""
    return stem.replace("-", " ").replace("_", " ").capitalize()


def _wrap_destination(destination):
    # CommonMark only allows spaces in a destination inside <...>
    if " " in destination:
        return f"<{destination}>"
    return destination


def format_definition(label, destination, title):
    """Render one ``[label]: destination "title"`` reference definition."""
    title = str(title).replace('"', '\\"')
    return f'[{label}]: {_wrap_destination(destination)} "{title}"'


def relative_link_path(source_path, target_path):
    """
    Path from the directory of ``source_path`` to ``target_path``, both
    corpus-relative, with the text extension removed.

    The result is a same-corpus hop in source-tree terms; the site generator
    is left to turn it into a final URL.
    """
    source_dir = str(PurePosixPath(source_path).parent)
    rel = posix_relpath(str(PurePosixPath(target_path)), source_dir)
    return strip_text_extension(rel)


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------


@dataclass
class Document:
    """A page or collection entry supplied by the site generator."""

    path: str
    body: str = ""
    front_matter: dict = field(default_factory=dict)
    slug: Optional[str] = None
    extension: str = ""

    def __post_init__(self):
        self.path = str(self.path)
        if self.body is None:
            self.body = ""
        if self.front_matter is None:
            self.front_matter = {}
        if self.slug is None and self.front_matter.get("slug"):
            self.slug = str(self.front_matter["slug"])
        if not self.extension:
            self.extension = PurePosixPath(self.path).suffix
        elif not self.extension.startswith("."):
            self.extension = f".{self.extension}"

    @classmethod
    def from_mapping(cls, data):
        """Build a Document from a plain ``{path, body, front_matter}`` map."""
        front_matter = data.get("front_matter")
        if front_matter is None:
            front_matter = data.get("frontMatter")
        return cls(
            path=data["path"],
            body=data.get("body", ""),
            front_matter=dict(front_matter or {}),
            slug=data.get("slug"),
            extension=data.get("extension", ""),
        )

    @property
    def stem(self):
        return PurePosixPath(self.path).stem

    @property
    def is_text(self):
        return self.extension.lower() in TEXT_EXTENSIONS


def _as_document(value):
    if isinstance(value, Document):
        return value
    return Document.from_mapping(value)


@dataclass(frozen=True)
class Configuration:
    """Tag and mention destinations.  ``None`` selects the relative default."""

    tag_base_url: Optional[str] = None
    mention_base_url: Optional[str] = None

    @classmethod
    def from_mapping(cls, mapping):
        """
        Read settings from a ``foam_links`` section, or from a site config
        that carries one at top level or under ``extra``.
        """
        if isinstance(mapping, cls):
            return mapping
        if not mapping:
            return cls()

        section = mapping
        if "foam_links" in mapping:
            section = mapping["foam_links"]
        elif "extra" in mapping and "foam_links" in (mapping["extra"] or {}):
            section = mapping["extra"]["foam_links"]
        section = section or {}

        def _setting(*keys):
            for key in keys:
                value = section.get(key)
                if value:
                    return str(value)
            return None

        return cls(
            tag_base_url=_setting("tag_base_url", "tagBaseURL"),
            mention_base_url=_setting("mention_base_url", "mentionBaseURL"),
        )

    def tag_destination(self, name):
        if self.tag_base_url:
            return f"{self.tag_base_url}{name}"
        return f"{DEFAULT_TAG_PREFIX}{name}"

    def mention_destination(self, name):
        if self.mention_base_url:
            return f"{self.mention_base_url}{name}"
        return f"{DEFAULT_MENTION_PREFIX}{name}"


@dataclass(frozen=True)
class Definition:
    label: str
    destination: str
    title: str

    def render(self):
        return format_definition(self.label, self.destination, self.title)


class Corpus:
    """
    The text documents visible for resolution, in site order.

    Two lookup tables from base name and slug to the first document carrying
    them are built once: one exact, one case-insensitive.  An exact match
    anywhere in the corpus wins over a match that only differs in case; within
    each table the first document in corpus order wins.
    """

    def __init__(self, documents=()):
        self.documents = [d for d in map(_as_document, documents) if d.is_text]
        self._index = {}
        self._folded = {}
        for doc in self.documents:
            for key in (doc.stem, doc.slug):
                if key:
                    self._index.setdefault(key, doc)
                    self._folded.setdefault(key.lower(), doc)

    def __iter__(self):
        return iter(self.documents)

    def __len__(self):
        return len(self.documents)

    @property
    def lookup_keys(self):
        return len(self._index)

    def find(self, target_text):
        """Return the Document ``target_text`` refers to, or None."""
        base = PurePosixPath(target_text.strip()).stem
        if not base:
            return None
        if base in self._index:
            return self._index[base]
        return self._folded.get(base.lower())


def extract_title(document):
    """Front-matter title, else first H1, else the humanised file name."""
    title = document.front_matter.get("title")
    if title:
        return str(title)
    match = H1_RE.search(document.body)
    if match and match.group(1).strip():
        return match.group(1).strip()
    return humanise_stem(document.stem)


# ---------------------------------------------------------------------------
# Scanner
# ---------------------------------------------------------------------------


@dataclass
class ScanResult:
    wikilinks: list
    embeds: list
    tags: list
    mentions: list

    @property
    def references(self):
        """Distinct raw references across all four kinds, first seen first."""
        return list(
            dict.fromkeys(self.wikilinks + self.embeds + self.tags + self.mentions)
        )


def scan_references(text):
    return ScanResult(
        wikilinks=WIKI_LINK_RE.findall(text),
        embeds=WIKI_EMBED_RE.findall(text),
        tags=TAG_RE.findall(text),
        mentions=MENTION_RE.findall(text),
    )


# ---------------------------------------------------------------------------
# Rewriter passes
# ---------------------------------------------------------------------------


def rewrite_wikilinks(text, replacements):
    """
    [[target]] -> [target]; [[target|display]] -> [display](path).

    ``replacements`` maps resolved target text to its relative path; an
    aliased link to an unknown target keeps the raw target as destination.
    """

    def _replace(match):
        link_text = match.group(1).strip()
        if "|" not in link_text:
            return f"[{link_text}]"
        target, display = link_text.split("|", 1)
        target = target.strip()
        destination = replacements.get(target, target)
        return f"[{display.strip()}]({_wrap_destination(destination)})"

    return WIKI_LINK_RE.sub(_replace, text)


def rewrite_embeds(text):
    """![[target]] and ![[target|alt]] -> ![target]"""

    def _replace(match):
        target = match.group(1).strip().split("|", 1)[0].strip()
        return f"![{target}]"

    return WIKI_EMBED_RE.sub(_replace, text)


def rewrite_tags(text):
    return TAG_RE.sub(lambda m: f"[#{m.group(1)}]", text)


def rewrite_mentions(text):
    return MENTION_RE.sub(lambda m: f"[@{m.group(1)}]", text)


def render_reference_block(definitions):
    lines = [BEGIN_MARKER]
    lines.extend(d.render() for d in definitions)
    lines.append(END_MARKER)
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Transform
# ---------------------------------------------------------------------------


class FoamLinkTransform:
    """
    Rewrites one document against a corpus snapshot.

    After ``run()`` the instance exposes what it did for reporting:
    ``references`` (distinct raw references), ``definitions`` and
    ``unresolved`` (lookup keys of wikilinks with no matching document).
    """

    def __init__(self, document, corpus, config=None):
        self.document = _as_document(document)
        self.corpus = corpus if isinstance(corpus, Corpus) else Corpus(corpus or ())
        self.config = Configuration.from_mapping(config)

        self.scan = scan_references(self.document.body)
        self.references = self.scan.references
        self.definitions = []
        self.unresolved = []

        # target text -> relative path, for aliased inline links
        self._replacements = {}
        # document path -> (relative path, title)
        self._described = {}

    def describe(self, target):
        """Relative path and title of ``target``, computed once per call."""
        if target.path not in self._described:
            self._described[target.path] = (
                relative_link_path(self.document.path, target.path),
                extract_title(target),
            )
        return self._described[target.path]

    def resolve(self, raw, tags, mentions):
        """Classify one raw reference and build its Definition."""
        link_text = raw.strip()
        if "|" in link_text:
            target_text = link_text.split("|", 1)[0].strip()
        else:
            target_text = link_text

        if link_text in tags:
            return Definition(
                f"#{link_text}", self.config.tag_destination(link_text), f"Tag: {link_text}"
            )
        if link_text in mentions:
            return Definition(
                f"@{link_text}",
                self.config.mention_destination(link_text),
                f"Mention: {link_text}",
            )

        target = self.corpus.find(target_text)
        if target is None:
            self.unresolved.append(link_text)
            placeholder = target_text or link_text or raw
            return Definition(placeholder, placeholder, placeholder)

        path, title = self.describe(target)
        self._replacements[target_text] = path
        return Definition(link_text, path, title)

    def run(self):
        body = self.document.body
        if not self.references:
            return body

        self.unresolved = []
        tags = set(self.scan.tags)
        mentions = set(self.scan.mentions)
        self.definitions = [self.resolve(raw, tags, mentions) for raw in self.references]

        # Each pass rescans the output of the previous one.
        body = rewrite_wikilinks(body, self._replacements)
        body = rewrite_embeds(body)
        body = rewrite_tags(body)
        body = rewrite_mentions(body)

        return f"{body}\n\n{render_reference_block(self.definitions)}"


def transform(document, corpus, config=None):
    """Return ``document``'s body rewritten into reference-style Markdown."""
    return FoamLinkTransform(document, corpus, config).run()
