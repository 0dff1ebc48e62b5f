# scorm_mcp/runtime/scripts.py
"""JavaScript installed into, and evaluated against, content pages."""

import json
from typing import Any

SN_BINDING = "__scormMcpSn"

# Installed with add_init_script before any content script runs. Only the top
# frame gets an API instance; nested frames discover it via window.parent.
BRIDGE_SCRIPT = r"""
(() => {
  if (window.top !== window || window.SCORM_MCP) return;

  const options = window.__scormMcpOptions || {};
  const calls = [];
  const state = { phase: 'none', lastError: '0' };
  const data = Object.assign({
    'cmi.mode': 'normal',
    'cmi.entry': 'ab-initio',
    'cmi.learner_id': 'mcp-learner',
    'cmi.learner_name': 'MCP Learner',
    'cmi.completion_status': 'unknown',
    'cmi.success_status': 'unknown',
    'cmi.exit': ''
  }, options.initial_data || {});

  const errorStrings = {
    '0': 'No Error',
    '101': 'General Exception',
    '103': 'Already Initialized',
    '104': 'Content Instance Terminated',
    '112': 'Termination Before Initialization',
    '113': 'Termination After Termination',
    '122': 'Retrieve Data Before Initialization',
    '123': 'Retrieve Data After Termination',
    '132': 'Store Data Before Initialization',
    '133': 'Store Data After Termination',
    '142': 'Commit Before Initialization',
    '143': 'Commit After Termination'
  };

  const fail = (code, value) => { state.lastError = code; return value; };
  const ok = (value) => { state.lastError = '0'; return value; };
  const guard = (before, after) => {
    if (state.phase === 'none') return before;
    if (state.phase === 'terminated') return after;
    return null;
  };

  const impl = {
    Initialize() {
      if (state.phase === 'initialized') return fail('103', 'false');
      if (state.phase === 'terminated') return fail('104', 'false');
      state.phase = 'initialized';
      return ok('true');
    },
    Terminate() {
      const err = guard('112', '113');
      if (err) return fail(err, 'false');
      state.phase = 'terminated';
      return ok('true');
    },
    GetValue(element) {
      const err = guard('122', '123');
      if (err) return fail(err, '');
      return ok(Object.prototype.hasOwnProperty.call(data, element) ? data[element] : '');
    },
    SetValue(element, value) {
      const err = guard('132', '133');
      if (err) return fail(err, 'false');
      data[element] = value;
      return ok('true');
    },
    Commit() {
      const err = guard('142', '143');
      if (err) return fail(err, 'false');
      return ok('true');
    },
    GetLastError() { return state.lastError; },
    GetErrorString(code) { return errorStrings[code] || ''; },
    GetDiagnostic(code) { return errorStrings[code || state.lastError] || ''; }
  };

  const api = {};
  for (const name of Object.keys(impl)) {
    api[name] = function (...args) {
      const parameters = args.map((a) => (a === undefined || a === null ? '' : String(a)));
      const result = String(impl[name].apply(null, parameters));
      calls.push({ ts: Date.now(), method: name, parameters, result });
      return result;
    };
  }

  Object.defineProperty(window, '__scorm_calls', { value: calls, enumerable: false });
  window.API_1484_11 = api;
  window.SCORM_MCP = {
    apiInvoke: (method, args) => api[method].apply(null, args || []),
    snInvoke: async (action, payload) => {
      if (typeof window.__scormMcpSn !== 'function') return null;
      try { return await window.__scormMcpSn(action, payload || {}); } catch (e) { return null; }
    },
    getCalls: () => calls.slice(),
    getData: () => Object.assign({}, data)
  };
})();
"""

HAS_API_METHOD = """(method) => {
  const api = window.API_1484_11;
  return !!api && typeof api[method] === 'function';
}"""

CALL_API_METHOD = """([method, args]) => {
  const value = window.API_1484_11[method].apply(window.API_1484_11, args);
  return value === undefined ? null : value;
}"""

GET_CALLS = """() => (window.SCORM_MCP && typeof window.SCORM_MCP.getCalls === 'function')
  ? window.SCORM_MCP.getCalls()
  : (Array.isArray(window.__scorm_calls) ? window.__scorm_calls.slice() : [])"""

SN_INVOKE = """async ([method, payload]) => {
  const bridge = window.SCORM_MCP;
  if (!bridge || typeof bridge.snInvoke !== 'function') return null;
  try { return await bridge.snInvoke(method, payload); } catch (e) { return null; }
}"""

# indirect eval so the script runs in global scope
EXECUTE_SCRIPT = """async (source) => {
  try {
    const result = await (0, eval)(source);
    return { success: true, result };
  } catch (e) {
    return {
      success: false,
      error: {
        name: (e && e.name) || 'Error',
        message: (e && e.message) || String(e),
        stack: (e && e.stack) || null
      }
    };
  }
}"""


# -- DOM interaction ------------------------------------------------------------

DESCRIBE_ELEMENT = """(el) => el ? {
  tagName: el.tagName.toLowerCase(),
  id: el.id || null,
  className: (typeof el.className === 'string' && el.className) || null,
  type: el.getAttribute('type'),
  name: el.getAttribute('name'),
  text: (el.textContent || '').trim().slice(0, 200),
  value: 'value' in el ? String(el.value) : null,
  checked: 'checked' in el ? Boolean(el.checked) : null
} : null"""

DESCRIBE_ACTIVE_ELEMENT = f"() => ({DESCRIBE_ELEMENT})(document.activeElement === document.body ? null : document.activeElement)"

ELEMENT_KIND = """(el) => {
  const tag = el.tagName.toLowerCase();
  if (tag === 'select' || tag === 'textarea') return tag;
  if (tag === 'input') {
    const type = (el.getAttribute('type') || 'text').toLowerCase();
    return type === 'checkbox' || type === 'radio' ? type : 'text';
  }
  return el.isContentEditable ? 'text' : tag;
}"""

QUERY_ELEMENT = """([selector, queryType]) => {
  const el = document.querySelector(selector);
  if (!el) return { found: false };
  const style = window.getComputedStyle(el);
  const rect = el.getBoundingClientRect();
  const parts = {
    text: () => ({ text: (el.textContent || '').trim(), innerText: el.innerText }),
    attributes: () => ({
      attributes: Object.fromEntries(Array.from(el.attributes).map((a) => [a.name, a.value]))
    }),
    visibility: () => ({
      visible: style.display !== 'none' && style.visibility !== 'hidden' && rect.width > 0 && rect.height > 0,
      display: style.display,
      visibility: style.visibility,
      opacity: style.opacity,
      bounds: { x: rect.x, y: rect.y, width: rect.width, height: rect.height }
    }),
    styles: () => ({
      styles: {
        color: style.color,
        backgroundColor: style.backgroundColor,
        fontSize: style.fontSize,
        display: style.display,
        position: style.position
      }
    }),
    value: () => ({
      value: 'value' in el ? String(el.value) : null,
      checked: 'checked' in el ? Boolean(el.checked) : null,
      disabled: Boolean(el.disabled)
    })
  };
  const base = { found: true, tagName: el.tagName.toLowerCase(), id: el.id || null };
  if (queryType === 'all') {
    return Object.assign(base, ...Object.values(parts).map((part) => part()));
  }
  return Object.assign(base, parts[queryType]());
}"""

WAIT_CONDITION = """(condition) => {
  if (condition.selector) {
    const el = document.querySelector(condition.selector);
    if (!el) return false;
    if (condition.visible != null) {
      const style = window.getComputedStyle(el);
      const shown = style.display !== 'none' && style.visibility !== 'hidden' && el.getClientRects().length > 0;
      if (shown !== condition.visible) return false;
    }
    if (condition.text != null && !(el.textContent || '').includes(condition.text)) return false;
    if (condition.attribute) {
      if (!el.hasAttribute(condition.attribute)) return false;
      if (condition.attribute_value != null && el.getAttribute(condition.attribute) !== condition.attribute_value) {
        return false;
      }
    }
  }
  if (condition.expression) {
    try {
      if (!(0, eval)(condition.expression)) return false;
    } catch (e) {
      return false;
    }
  }
  return true;
}"""

FIND_INTERACTIVE = """() => {
  const shown = (el) => {
    const style = window.getComputedStyle(el);
    return style.display !== 'none' && style.visibility !== 'hidden' && el.getClientRects().length > 0;
  };
  const selectorFor = (el) => {
    if (el.id) return '#' + CSS.escape(el.id);
    if (el.getAttribute('name')) return el.tagName.toLowerCase() + '[name="' + el.getAttribute('name') + '"]';
    const siblings = Array.from(el.parentNode ? el.parentNode.children : []).filter((s) => s.tagName === el.tagName);
    return el.tagName.toLowerCase() + ':nth-of-type(' + (siblings.indexOf(el) + 1) + ')';
  };
  const label = (el) => {
    if (el.labels && el.labels.length) return el.labels[0].textContent.trim();
    return el.getAttribute('aria-label') || el.getAttribute('placeholder') || null;
  };
  const forms = Array.from(document.querySelectorAll('form')).map((form) => ({
    selector: selectorFor(form),
    fields: form.elements.length
  }));
  const buttons = Array.from(document.querySelectorAll('button, input[type="button"], input[type="submit"], [role="button"]'))
    .filter(shown)
    .map((el) => ({ selector: selectorFor(el), text: (el.textContent || el.value || '').trim(), disabled: Boolean(el.disabled) }));
  const inputs = Array.from(document.querySelectorAll('input:not([type="button"]):not([type="submit"]):not([type="hidden"]), select, textarea'))
    .filter(shown)
    .map((el) => ({
      selector: selectorFor(el),
      tagName: el.tagName.toLowerCase(),
      type: el.getAttribute('type'),
      name: el.getAttribute('name'),
      label: label(el)
    }));
  const groups = {};
  for (const el of document.querySelectorAll('input[type="radio"], input[type="checkbox"]')) {
    const name = el.getAttribute('name');
    if (!name) continue;
    (groups[name] = groups[name] || { name, type: el.getAttribute('type'), options: [] }).options.push({
      selector: selectorFor(el),
      value: el.value,
      label: label(el)
    });
  }
  return { forms, buttons, inputs, assessments: Object.values(groups) };
}"""

def options_script(adapter_options: dict[str, Any] | None) -> str:
    """Init script that publishes adapter options before the bridge script reads them."""
    return f"window.__scormMcpOptions = {json.dumps(adapter_options or {})};"
