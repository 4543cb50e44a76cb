"""Structured page-content extraction scripts.

Every extractor is a self-contained JavaScript expression that returns plain
JSON, so the same script runs unchanged through Playwright's
``page.evaluate`` and CDP's ``Runtime.evaluate``.

Supported kinds: ``full``, ``text``, ``headings``, ``links``, ``forms``,
``search_results``.
"""

from __future__ import annotations

import json
from typing import Any

CONTENT_KINDS: tuple[str, ...] = ("full", "text", "headings", "links", "forms", "search_results")

# Result containers tried in order; the first selector with matches wins.
SEARCH_RESULT_SELECTORS: tuple[str, ...] = (
    ".search-result",
    ".result",
    '[role="listitem"]',
    ".item",
    ".card",
    "article",
    ".product",
    ".mdc-list-item",
    '[data-testid="search-results"] > div',
)

_PAGE_INFO_JS = """
(() => ({
    title: document.title,
    url: window.location.href,
    meta_description: document.querySelector('meta[name="description"]')?.content || '',
    is_search_page: window.location.href.includes('/search')
        || document.title.toLowerCase().includes('search')
        || !!document.querySelector('input[type="search"]'),
}))()
"""

_TEXT_JS = "(() => ({ text: document.body ? document.body.innerText : '' }))()"

_HEADINGS_JS = """
(() => ({
    headings: Array.from(document.querySelectorAll('h1, h2, h3, h4, h5, h6')).map(h => ({
        level: parseInt(h.tagName.substring(1)),
        text: h.innerText.trim(),
    })),
}))()
"""

_LINKS_JS = """
(() => ({
    links: Array.from(document.querySelectorAll('a[href]')).map(a => ({
        text: a.innerText.trim() || a.getAttribute('title') || a.getAttribute('aria-label') || '',
        href: a.href,
    })),
}))()
"""

_FORMS_FN = """
() => Array.from(document.querySelectorAll('form')).map(form => ({
    action: form.action,
    method: form.method,
    inputs: Array.from(form.querySelectorAll('input:not([type="hidden"]), textarea, select')).map(input => ({
        type: input.type || input.tagName.toLowerCase(),
        name: input.name || '',
        id: input.id || '',
        placeholder: input.placeholder || '',
        label: (input.id && document.querySelector(`label[for="${CSS.escape(input.id)}"]`)?.innerText.trim()) || '',
    })),
}))
"""

_FORMS_JS = f"(() => ({{ forms: ({_FORMS_FN})() }}))()"

# Generic fallback: content links outside nav/header/footer with real text.
_GENERIC_LINKS_FN = """
() => Array.from(document.querySelectorAll('a[href]'))
    .filter(a => !a.closest('nav, header, footer') && a.innerText.trim().length > 10)
    .map((a, index) => ({ index: index + 1, title: a.innerText.trim(), link: a.href }))
"""

_SEARCH_RESULTS_JS = (
    """
(() => {
    const selectors = %(selectors)s;
    const searchInput = document.querySelector(
        'input[type="search"], input[placeholder*="Search"], input[aria-label*="Search"]'
    );
    let results = [];
    let used_selector = '';
    for (const selector of selectors) {
        const elements = document.querySelectorAll(selector);
        if (elements.length === 0) continue;
        results = Array.from(elements).map((item, index) => ({
            index: index + 1,
            title: item.querySelector('h3, h2, h4, .title, [role="heading"]')?.innerText.trim()
                || item.querySelector('a')?.innerText.trim()
                || 'Result ' + (index + 1),
            description: item.querySelector('p, .description')?.innerText.trim() || '',
            link: item.querySelector('a')?.href || '',
        }));
        used_selector = selector;
        break;
    }
    if (results.length === 0) {
        const links = (%(generic)s)();
        if (links.length > 3) {
            results = links;
            used_selector = 'generic-links';
        }
    }
    return { query: searchInput ? searchInput.value : '', results, used_selector };
})()
"""
    % {"selectors": json.dumps(list(SEARCH_RESULT_SELECTORS)), "generic": _GENERIC_LINKS_FN.strip()}
)

_FULL_JS = """
(() => {
    const isSearchPage = window.location.href.includes('/search')
        || document.title.toLowerCase().includes('search')
        || !!document.querySelector('input[type="search"]');
    let search_results = [];
    if (isSearchPage) {
        search_results = Array.from(
            document.querySelectorAll('.result, .search-result, [role="listitem"], .item, .card, article')
        ).map((item, index) => ({
            index: index + 1,
            title: item.querySelector('h3, h2, h4, .title, [role="heading"]')?.innerText.trim() || 'Untitled Result',
            description: item.querySelector('p, .description')?.innerText.trim() || '',
            link: item.querySelector('a')?.href || '',
        }));
        if (search_results.length === 0) {
            const links = (%(generic)s)();
            if (links.length > 3) search_results = links;
        }
    }
    return {
        headings: Array.from(document.querySelectorAll('h1, h2, h3, h4, h5, h6')).map(h => ({
            level: parseInt(h.tagName.substring(1)),
            text: h.innerText.trim(),
        })),
        paragraphs: Array.from(document.querySelectorAll('p')).map(p => p.innerText.trim()).filter(p => p.length > 0),
        lists: Array.from(document.querySelectorAll('ul, ol')).map(list => ({
            type: list.tagName.toLowerCase() === 'ul' ? 'unordered' : 'ordered',
            items: Array.from(list.querySelectorAll('li')).map(li => li.innerText.trim()),
        })),
        tables: Array.from(document.querySelectorAll('table')).map(table => ({
            headers: Array.from(table.querySelectorAll('th')).map(th => th.innerText.trim()),
            rows: Array.from(table.querySelectorAll('tr'))
                .map(tr => Array.from(tr.querySelectorAll('td')).map(td => td.innerText.trim()))
                .filter(row => row.length > 0),
        })),
        images: Array.from(document.querySelectorAll('img[src]')).map(img => ({
            src: img.src, alt: img.alt || '', width: img.width, height: img.height,
        })),
        forms: (%(forms)s)(),
        search_results,
        raw_text: document.body ? document.body.innerText : '',
    };
})()
""" % {"generic": _GENERIC_LINKS_FN.strip(), "forms": _FORMS_FN.strip()}

CONTENT_SCRIPTS: dict[str, str] = {
    "full": _FULL_JS,
    "text": _TEXT_JS,
    "headings": _HEADINGS_JS,
    "links": _LINKS_JS,
    "forms": _FORMS_JS,
    "search_results": _SEARCH_RESULTS_JS,
}

PAGE_INFO_SCRIPT = _PAGE_INFO_JS


def normalize_kind(kind: str) -> str:
    """Map user spellings (``search-results``, ``Text``) to a canonical kind.

    Unknown kinds fall back to ``full``.
    """
    key = (kind or "full").strip().lower().replace("-", "_")
    return key if key in CONTENT_SCRIPTS else "full"


def assemble(kind: str, page_info: dict[str, Any] | None, payload: dict[str, Any] | None) -> dict[str, Any]:
    """Combine the page info and one extractor's payload into the result dict."""
    result: dict[str, Any] = {"type": kind, "page_info": page_info or {}}
    result.update(payload or {})
    return result
