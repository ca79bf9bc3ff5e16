"""
In-page network activity instrumentation.

Produces an init script that wraps fetch and XMLHttpRequest so the readiness
engine can read the number of in-flight requests from the page. The script is
installed with ``context.add_init_script`` and therefore runs before any page
script on every new document.
"""

import json

NAMESPACE = "__ankabotNet"

_INSTRUMENTATION_TEMPLATE = """
(() => {
    if (window.%(ns)s) {
        return;
    }

    let ignore = null;
    const pattern = %(pattern)s;
    if (pattern) {
        try {
            ignore = new RegExp(pattern);
        } catch (e) {
            ignore = null;
        }
    }

    const state = { pending: 0 };
    Object.defineProperty(window, '%(ns)s', {
        value: state,
        enumerable: false,
        configurable: false,
        writable: false,
    });

    const isIgnored = (url) => {
        if (!ignore) {
            return false;
        }
        try {
            return ignore.test(String(url));
        } catch (e) {
            return false;
        }
    };

    const settle = () => {
        state.pending = Math.max(0, state.pending - 1);
    };

    if (typeof window.fetch === 'function') {
        const originalFetch = window.fetch;
        window.fetch = function(input, init) {
            const url = (input && input.url) ? input.url : input;
            if (isIgnored(url)) {
                return originalFetch.apply(this, arguments);
            }
            state.pending += 1;
            let result;
            try {
                result = originalFetch.apply(this, arguments);
            } catch (e) {
                settle();
                throw e;
            }
            return Promise.resolve(result).finally(settle);
        };
    }

    const XHR = window.XMLHttpRequest;
    if (XHR && XHR.prototype) {
        const originalOpen = XHR.prototype.open;
        const originalSend = XHR.prototype.send;

        XHR.prototype.open = function(method, url) {
            this.__ankabotUrl = url;
            return originalOpen.apply(this, arguments);
        };

        XHR.prototype.send = function() {
            if (!isIgnored(this.__ankabotUrl)) {
                let counted = true;
                state.pending += 1;
                this.addEventListener('loadend', () => {
                    if (counted) {
                        counted = false;
                        settle();
                    }
                });
                try {
                    return originalSend.apply(this, arguments);
                } catch (e) {
                    if (counted) {
                        counted = false;
                        settle();
                    }
                    throw e;
                }
            }
            return originalSend.apply(this, arguments);
        };
    }
})();
"""

PENDING_REQUESTS_JS = f"""
() => {{
    const state = window.{NAMESPACE};
    if (!state || typeof state.pending !== 'number') {{
        return 0;
    }}
    return Math.max(0, state.pending | 0);
}}
"""


def build_network_instrumentation_js(ignore_pattern: str | None = None) -> str:
    """Build the network instrumentation init script.

    Installing the script twice on one document is a no-op. Requests whose
    URL matches ``ignore_pattern`` are never counted; an invalid pattern
    excludes nothing.

    Args:
        ignore_pattern: Optional JavaScript regular expression source.

    Returns:
        JavaScript source for ``add_init_script``.
    """
    return _INSTRUMENTATION_TEMPLATE % {
        "ns": NAMESPACE,
        "pattern": json.dumps(ignore_pattern or None),
    }
