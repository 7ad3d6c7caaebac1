"""JavaScript injected into the page through Runtime.evaluate.

Dynamic values are embedded as JSON literals, never by string splicing.
"""

from __future__ import annotations

import json
from typing import Any

__all__ = [
    "AUDIO_CONTEXTS",
    "AUDIO_WORKLET_STATE",
    "CROSS_ORIGIN_ISOLATION",
    "CURRENT_URL",
    "HARD_REFRESH",
    "JAVASCRIPT_PROFILE",
    "MONITOR_WASM_INSTANTIATION",
    "PERFORMANCE_TIMELINE",
    "STOP_DOM_MUTATION_OBSERVER",
    "computed_style",
    "hydra_update_sketch",
    "selection_details_batch",
    "selection_info",
    "start_dom_mutation_observer",
]


def _lit(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


CURRENT_URL = "window.location.href"

HARD_REFRESH = (
    "window.tau5 && window.tau5.hardRefresh ? window.tau5.hardRefresh() "
    ": 'tau5.hardRefresh() not available (dev mode only)'"
)

AUDIO_CONTEXTS = """
(function() {
    const contexts = [];
    if (typeof AudioContext !== 'undefined') {
        const ctx = window.__audioContext || null;
        if (ctx) {
            contexts.push({
                state: ctx.state,
                sampleRate: ctx.sampleRate,
                currentTime: ctx.currentTime,
                baseLatency: ctx.baseLatency,
                outputLatency: ctx.outputLatency
            });
        }
    }
    return contexts;
})()
"""

CROSS_ORIGIN_ISOLATION = """
(function() {
    return {
        sharedArrayBufferAvailable: typeof SharedArrayBuffer !== 'undefined',
        crossOriginIsolated: self.crossOriginIsolated || false,
        coep: document.featurePolicy ? document.featurePolicy.allowsFeature('cross-origin-isolated') : 'unknown',
        userAgent: navigator.userAgent
    };
})()
"""

AUDIO_WORKLET_STATE = """
(function() {
    const result = {
        audioContexts: [],
        workletNodes: [],
        workletProcessors: []
    };
    if (typeof AudioContext !== 'undefined') {
        const ctx = window.__audioContext || window.audioContext || null;
        if (ctx) {
            result.audioContexts.push({
                state: ctx.state,
                sampleRate: ctx.sampleRate,
                currentTime: ctx.currentTime,
                hasWorklet: ctx.audioWorklet !== undefined
            });
            if (ctx.audioWorklet) {
                result.audioWorkletAvailable = true;
            }
        }
    }
    if (typeof AudioWorkletNode !== 'undefined') {
        result.audioWorkletNodeAvailable = true;
    }
    result.sharedArrayBufferAvailable = typeof SharedArrayBuffer !== 'undefined';
    return result;
})()
"""

MONITOR_WASM_INSTANTIATION = """
(function() {
    if (typeof WebAssembly === 'undefined') {
        return { available: false };
    }
    if (!window.__wasmMonitoringEnabled) {
        window.__wasmModules = [];
        const originalInstantiate = WebAssembly.instantiate;
        const originalInstantiateStreaming = WebAssembly.instantiateStreaming;

        const record = function(method, startTime, promise) {
            promise.then(result => {
                const info = {
                    timestamp: new Date().toISOString(),
                    method: method,
                    success: true,
                    duration: performance.now() - startTime,
                    hasModule: result.module !== undefined,
                    hasInstance: result.instance !== undefined
                };
                if (result.instance) {
                    info.exports = Object.keys(result.instance.exports);
                }
                window.__wasmModules.push(info);
                console.log('[WASM] Instantiation successful:', info);
            }).catch(error => {
                window.__wasmModules.push({
                    timestamp: new Date().toISOString(),
                    method: method,
                    success: false,
                    error: error.toString(),
                    duration: performance.now() - startTime
                });
                console.error('[WASM] Instantiation failed:', error);
            });
            return promise;
        };

        WebAssembly.instantiate = function(...args) {
            const startTime = performance.now();
            return record('instantiate', startTime, originalInstantiate.apply(this, args));
        };

        if (originalInstantiateStreaming) {
            WebAssembly.instantiateStreaming = function(response, imports) {
                const startTime = performance.now();
                if (response && response.url) {
                    console.log('[WASM] Loading from:', response.url);
                }
                return record(
                    'instantiateStreaming',
                    startTime,
                    originalInstantiateStreaming.call(this, response, imports)
                );
            };
        }

        window.__wasmMonitoringEnabled = true;
    }
    return {
        available: true,
        monitoringEnabled: true,
        instantiations: window.__wasmModules
    };
})()
"""

PERFORMANCE_TIMELINE = """
(function() {
    const timeline = {
        navigation: {},
        resources: [],
        measures: [],
        marks: []
    };
    if (performance.timing) {
        const t = performance.timing;
        timeline.navigation = {
            domContentLoaded: t.domContentLoadedEventEnd - t.navigationStart,
            loadComplete: t.loadEventEnd - t.navigationStart,
            domInteractive: t.domInteractive - t.navigationStart
        };
    }
    if (performance.getEntriesByType) {
        timeline.resources = performance.getEntriesByType('resource')
            .filter(r => r.name.includes('.wasm') ||
                         r.name.includes('audioworklet') ||
                         r.name.includes('worklet'))
            .map(r => ({
                name: r.name,
                duration: r.duration,
                startTime: r.startTime,
                transferSize: r.transferSize || 0,
                decodedBodySize: r.decodedBodySize || 0
            }));
        timeline.marks = performance.getEntriesByType('mark').map(m => ({
            name: m.name,
            startTime: m.startTime
        }));
        timeline.measures = performance.getEntriesByType('measure').map(m => ({
            name: m.name,
            duration: m.duration,
            startTime: m.startTime
        }));
    }
    if (performance.memory) {
        timeline.memory = {
            usedJSHeapSize: performance.memory.usedJSHeapSize,
            totalJSHeapSize: performance.memory.totalJSHeapSize,
            jsHeapSizeLimit: performance.memory.jsHeapSizeLimit
        };
    }
    return timeline;
})()
"""

STOP_DOM_MUTATION_OBSERVER = """
(function() {
    if (window.__cdpMutationObserver) {
        window.__cdpMutationObserver.disconnect();
        delete window.__cdpMutationObserver;
        return { success: true };
    }
    return { success: false, error: 'No observer running' };
})()
"""

JAVASCRIPT_PROFILE = """
(function() {
    const entries = performance.getEntriesByType('measure')
        .filter(e => e.name.includes('hook') || e.name.includes('LiveView'))
        .map(e => ({
            name: e.name,
            duration: e.duration,
            startTime: e.startTime
        }));
    const hookStats = window.__liveViewHookStats || {};
    return {
        measures: entries,
        hookStats: hookStats,
        totalJSHeapSize: performance.memory ? performance.memory.totalJSHeapSize : null,
        usedJSHeapSize: performance.memory ? performance.memory.usedJSHeapSize : null
    };
})()
"""


def start_dom_mutation_observer(selector: str) -> str:
    sel = _lit(selector)
    return f"""
(function() {{
    if (window.__cdpMutationObserver) {{
        window.__cdpMutationObserver.disconnect();
    }}
    const selector = {sel};
    const targetNode = document.querySelector(selector);
    if (!targetNode) {{
        return {{ error: 'Element not found: ' + selector }};
    }}
    window.__cdpMutationObserver = new MutationObserver(function(mutations) {{
        mutations.forEach(function(mutation) {{
            console.log('[DOM_MUTATION]', JSON.stringify({{
                type: mutation.type,
                target: mutation.target.tagName || mutation.target.nodeType,
                attributeName: mutation.attributeName,
                oldValue: mutation.oldValue,
                addedNodes: Array.from(mutation.addedNodes).map(n => n.tagName || n.nodeType),
                removedNodes: Array.from(mutation.removedNodes).map(n => n.tagName || n.nodeType)
            }}));
        }});
    }});
    window.__cdpMutationObserver.observe(targetNode, {{
        attributes: true,
        attributeOldValue: true,
        characterData: true,
        characterDataOldValue: true,
        childList: true,
        subtree: true
    }});
    return {{ success: true, observing: selector }};
}})()
"""


def computed_style(selector: str, properties: list[str] | None = None) -> str:
    props = _lit([str(p) for p in properties]) if properties else "null"
    return f"""
(function() {{
    const element = document.querySelector({_lit(selector)});
    if (!element) return {{ error: 'Element not found' }};
    const styles = window.getComputedStyle(element);
    const result = {{}};
    const requestedProps = {props};
    if (requestedProps && requestedProps.length > 0) {{
        for (const prop of requestedProps) {{
            result[prop] = styles.getPropertyValue(prop);
        }}
    }} else {{
        for (let i = 0; i < styles.length; i++) {{
            const prop = styles[i];
            result[prop] = styles.getPropertyValue(prop);
        }}
    }}
    return result;
}})()
"""


def selection_info(*, include_context: bool, context_length: int, want_elements: bool) -> str:
    ctx = "true" if include_context else "false"
    n = max(0, int(context_length))
    elements = "true" if want_elements else "false"
    return f"""
(function() {{
    const selection = window.getSelection();
    if (!selection || selection.rangeCount === 0) {{
        return {{ hasSelection: false }};
    }}
    const range = selection.getRangeAt(0);
    const commonAncestor = range.commonAncestorContainer;

    function escapeCSS(str) {{
        if (!str) return '';
        if (window.CSS && CSS.escape) return CSS.escape(str);
        return str.replace(/([!"#$%&'()*+,.\\/:;<=>?@[\\\\\\]^`{{|}}~])/g, '\\\\$1');
    }}

    function buildUniqueSelector(element) {{
        if (!element || element === document.documentElement) return 'html';
        if (element === document.body) return 'body';
        if (element.id) return '#' + escapeCSS(element.id);
        const path = [];
        let current = element;
        while (current && current !== document.body && current !== document.documentElement) {{
            let selector = current.tagName.toLowerCase();
            if (current.className && typeof current.className === 'string') {{
                const classes = current.className.trim().split(/\\s+/).filter(Boolean);
                selector += classes.map(cls => '.' + escapeCSS(cls)).join('');
            }}
            if (current.id) {{
                path.unshift('#' + escapeCSS(current.id));
                break;
            }}
            if (current.parentElement) {{
                const siblings = Array.from(current.parentElement.children)
                    .filter(s => s.tagName === current.tagName);
                if (siblings.length > 1) {{
                    selector += ':nth-of-type(' + (siblings.indexOf(current) + 1) + ')';
                }}
            }}
            path.unshift(selector);
            current = current.parentElement;
        }}
        return path.join(' > ');
    }}

    function getNodeInfo(node) {{
        const info = {{
            nodeType: node.nodeType,
            nodeName: node.nodeName,
            nodeValue: node.nodeValue,
            isText: node.nodeType === Node.TEXT_NODE,
            isElement: node.nodeType === Node.ELEMENT_NODE,
            tagName: node.tagName ? node.tagName.toLowerCase() : null,
            className: node.className || null,
            id: node.id || null
        }};
        if (node.nodeType === Node.ELEMENT_NODE) {{
            info.path = buildUniqueSelector(node);
        }} else if (node.parentElement) {{
            info.path = buildUniqueSelector(node.parentElement) + ' > #text';
        }} else {{
            info.path = '#text';
        }}
        return info;
    }}

    const affectedNodes = [];
    const walker = document.createTreeWalker(commonAncestor, NodeFilter.SHOW_ALL, {{
        acceptNode: function(node) {{
            return selection.containsNode(node, true) ? NodeFilter.FILTER_ACCEPT : NodeFilter.FILTER_SKIP;
        }}
    }});
    let node;
    while ((node = walker.nextNode())) {{
        const nodeInfo = getNodeInfo(node);
        nodeInfo.partial = node === range.startContainer || node === range.endContainer;
        if (node === range.startContainer) nodeInfo.startOffset = range.startOffset;
        if (node === range.endContainer) nodeInfo.endOffset = range.endOffset;
        affectedNodes.push(nodeInfo);
    }}

    let contextBefore = '';
    let contextAfter = '';
    if ({ctx}) {{
        try {{
            const root = commonAncestor.nodeType === Node.TEXT_NODE ? commonAncestor.parentNode : commonAncestor;
            const beforeRange = document.createRange();
            beforeRange.setStart(root, 0);
            beforeRange.setEnd(range.startContainer, range.startOffset);
            contextBefore = beforeRange.toString().slice(-{n});
        }} catch (e) {{
            contextBefore = '';
        }}
        try {{
            const afterRange = document.createRange();
            afterRange.setStart(range.endContainer, range.endOffset);
            if (commonAncestor.nodeType === Node.TEXT_NODE) {{
                afterRange.setEnd(commonAncestor, commonAncestor.textContent.length);
            }} else {{
                afterRange.setEndAfter(commonAncestor.lastChild || commonAncestor);
            }}
            contextAfter = afterRange.toString().slice(0, {n});
        }} catch (e) {{
            contextAfter = '';
        }}
    }}

    const rects = range.getClientRects();
    const boundingRect = range.getBoundingClientRect();

    let elementDetails = null;
    if ({elements}) {{
        elementDetails = affectedNodes
            .filter(info => info.isElement)
            .map(info => ({{ path: info.path, tagName: info.tagName, id: info.id, className: info.className }}));
        if (range.startContainer.nodeType === Node.TEXT_NODE && range.startContainer.parentElement) {{
            const parent = getNodeInfo(range.startContainer.parentElement);
            elementDetails.push({{
                path: parent.path,
                tagName: parent.tagName,
                id: parent.id,
                className: parent.className,
                isParentOfSelection: true
            }});
        }}
    }}

    return {{
        hasSelection: true,
        selectionText: selection.toString(),
        isCollapsed: range.collapsed,
        rangeCount: selection.rangeCount,
        startContainer: getNodeInfo(range.startContainer),
        startOffset: range.startOffset,
        endContainer: getNodeInfo(range.endContainer),
        endOffset: range.endOffset,
        commonAncestor: getNodeInfo(commonAncestor),
        affectedNodes: affectedNodes,
        containsMultipleNodes: affectedNodes.length > 1,
        contextBefore: contextBefore,
        contextAfter: contextAfter,
        bounds: {{
            top: boundingRect.top,
            left: boundingRect.left,
            bottom: boundingRect.bottom,
            right: boundingRect.right,
            width: boundingRect.width,
            height: boundingRect.height
        }},
        rectCount: rects.length,
        elementDetails: elementDetails
    }};
}})()
"""


_SELECTION_STYLE_PROPS = [
    "display",
    "position",
    "color",
    "backgroundColor",
    "fontSize",
    "fontWeight",
    "fontFamily",
    "lineHeight",
    "textAlign",
    "padding",
    "margin",
    "border",
]


def selection_details_batch(paths: list[str | None], *, include_styles: bool, include_html: bool) -> str:
    """Fetch styles and/or outer HTML for each selector path in one evaluation."""
    styles = "true" if include_styles else "false"
    html = "true" if include_html else "false"
    return f"""
(function() {{
    const paths = {_lit(paths)};
    const styleProps = {_lit(_SELECTION_STYLE_PROPS)};
    return paths.map(function(path) {{
        const result = {{}};
        if (!path) return result;
        const elem = document.querySelector(path);
        if (!elem) return result;
        if ({styles}) {{
            const computed = window.getComputedStyle(elem);
            result.styles = {{}};
            for (const prop of styleProps) {{
                result.styles[prop] = computed[prop];
            }}
        }}
        if ({html}) {{
            result.outerHtml = elem.outerHTML;
        }}
        return result;
    }});
}})()
"""


def hydra_update_sketch(code: str) -> str:
    return f"""
(() => {{
    const iframe = document.getElementById('hydra-background');
    if (iframe && iframe.contentWindow) {{
        iframe.contentWindow.postMessage({{
            type: 'update_sketch',
            code: {_lit(code)}
        }}, '*');
        return 'Hydra sketch updated successfully';
    }}
    return 'Error: Hydra iframe not found';
}})()
"""
