import logging
from pathlib import Path

from mkdocs.utils import meta

from foam_links import Configuration, Corpus, Document, FoamLinkTransform, is_text_path

log = logging.getLogger("mkdocs.hooks")

# ---------------------------------------------------------------------------
# MkDocs hook: Foam link references
# ---------------------------------------------------------------------------
#
# Enable in mkdocs.yml:
#
#   hooks:
#     - utils/hooks_foam_links.py
#
#   extra:
#     foam_links:
#       tag_base_url: https://example.com/tags/          # optional
#       mention_base_url: https://example.com/people/    # optional
#
# The corpus (every Markdown file with its front matter) is read once in
# on_files(); each page is then rewritten in on_page_markdown(), before
# MkDocs renders it to HTML.
# ---------------------------------------------------------------------------


class FoamLinksHook:
    """Per-build state shared between the hook entry points."""

    def __init__(self):
        self.settings = Configuration()
        self.corpus = Corpus()
        self.pages_rewritten = 0
        self.unresolved = []

    def load_config(self, config):
        self.settings = Configuration.from_mapping(config)
        log.info(
            f"[foam-links] Tags -> {self.settings.tag_destination('<name>')}, "
            f"mentions -> {self.settings.mention_destination('<name>')}"
        )

    # ------------------------------------------------------------------
    # Corpus
    # ------------------------------------------------------------------

    @staticmethod
    def read_document(f):
        """
        Load one MkDocs file as a Document, splitting off its YAML front
        matter.  Returns None if the source can't be read.
        """
        if not f.abs_src_path:
            log.debug(f"[foam-links] Skipping {f.src_uri}: no source file")
            return None
        try:
            text = Path(f.abs_src_path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            log.warning(f"[foam-links] Could not read {f.src_uri}: {e}")
            return None
        body, front_matter = meta.get_data(text)
        return Document(path=f.src_uri, body=body, front_matter=front_matter)

    def build_corpus(self, files):
        documents = []
        for f in files:
            if not is_text_path(f.src_uri):
                continue
            document = self.read_document(f)
            if document is not None:
                documents.append(document)
        self.corpus = Corpus(documents)

    # ------------------------------------------------------------------
    # Page rewriting
    # ------------------------------------------------------------------

    def process_page(self, markdown, page):
        src = page.file.src_uri
        if not is_text_path(src):
            return markdown

        document = Document(path=src, body=markdown, front_matter=dict(page.meta or {}))
        rewrite = FoamLinkTransform(document, self.corpus, self.settings)
        result = rewrite.run()

        if rewrite.references:
            self.pages_rewritten += 1
        for key in rewrite.unresolved:
            log.info(f"[foam-links] {src}: no page found for [[{key}]]")
            self.unresolved.append((src, key))

        log.debug(f"[foam-links] Processed {src} ({len(rewrite.references)} references)")
        return result

    def report(self):
        if self.pages_rewritten:
            log.info(f"[foam-links] Added link references to {self.pages_rewritten} page(s)")
        if self.unresolved:
            log.info(
                f"[foam-links] {len(self.unresolved)} wiki-link(s) left as placeholders "
                f"(see messages above)"
            )


# ---------------------------------------------------------------------------
# Module-level singleton, re-created each build via on_config()
# ---------------------------------------------------------------------------

_hook = FoamLinksHook()


# ---------------------------------------------------------------------------
# MkDocs hook entry points
# ---------------------------------------------------------------------------


def on_config(config, **kwargs):
    global _hook
    _hook = FoamLinksHook()
    _hook.load_config(config)
    return config


def on_files(files, config, **kwargs):
    """Read every Markdown file once per build."""
    _hook.build_corpus(files)
    log.info(
        f"[foam-links] Indexed {len(_hook.corpus)} documents "
        f"({_hook.corpus.lookup_keys} lookup keys)"
    )
    return files


def on_page_markdown(markdown, page, config, files, **kwargs):
    return _hook.process_page(markdown, page)


def on_post_build(config, **kwargs):
    _hook.report()
    return config
