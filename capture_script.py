capture_script = r"""
(() => {
  if (window.top !== window) return;
  if (window.__domCapture) return;

  const POPUP_CLASS = "dom-capture-popup";
  const HIGHLIGHT = "2px solid #2196F3";

  let captureMode = false;
  let highlighted = null;
  let popup = null;
  let lastElementId = null;

  function safeText(t) {
    if (!t) return "";
    return String(t).replace(/\s+/g, " ").trim();
  }

  function send(msg) {
    if (typeof window.domCaptureSend !== "function") {
      return Promise.resolve({ success: false, error: "recorder binding missing" });
    }
    return window.domCaptureSend(msg).catch((e) => ({ success: false, error: String(e) }));
  }

  // ---------------------------------------------------------------------------
  // Snapshots (selector + ID generation happens in the recorder)
  // ---------------------------------------------------------------------------
  function sameTagPosition(el) {
    const parent = el.parentElement;
    if (!parent) return { index: 1, count: 1 };
    const siblings = Array.from(parent.children).filter((c) => c.tagName === el.tagName);
    return { index: siblings.indexOf(el) + 1, count: siblings.length };
  }

  function nodeSnapshot(el) {
    const attributes = {};
    for (const attr of Array.from(el.attributes || [])) {
      attributes[attr.name] = attr.value;
    }
    const pos = sameTagPosition(el);
    return {
      tag: (el.tagName || "").toLowerCase(),
      id: el.id || "",
      attributes,
      classes: Array.from(el.classList || []),
      text: safeText(el.textContent || "").slice(0, 100),
      same_tag_index: pos.index,
      same_tag_count: pos.count,
    };
  }

  function elementSnapshot(el) {
    const snap = nodeSnapshot(el);
    const tag = snap.tag;
    snap.input_type = (tag === "input" || tag === "button" || tag === "select") ? String(el.type || "") : "";
    snap.ancestors = [];
    let cur = el.parentElement;
    while (cur && snap.ancestors.length < 2) {
      snap.ancestors.push(nodeSnapshot(cur));
      cur = cur.parentElement;
    }
    return snap;
  }

  function detectFramework() {
    if (window.React || document.querySelector("[data-reactroot]")) return "React";
    if (window.angular || document.querySelector("[ng-app]")) return "Angular";
    if (document.querySelector("[data-v-app]") || window.Vue) return "Vue";
    return "Unknown";
  }

  function isLikelyNavigation(el) {
    return el.tagName === "A" ||
      (el.tagName === "BUTTON" && el.type !== "button") ||
      el.onclick !== null ||
      el.getAttribute("role") === "link";
  }

  // ---------------------------------------------------------------------------
  // UI
  // ---------------------------------------------------------------------------
  function notify(message, type) {
    if (!document.body) return;
    const n = document.createElement("div");
    n.textContent = message;
    n.style.cssText = "position:fixed;top:10px;right:10px;padding:10px 15px;border-radius:4px;color:white;" +
      "z-index:2147483647;font-size:14px;box-shadow:0 2px 5px rgba(0,0,0,0.2);" +
      "background:" + (type === "error" ? "#f44336" : "#2196F3");
    document.body.appendChild(n);
    setTimeout(() => n.remove(), 3000);
  }

  function escapeHtml(html) {
    const div = document.createElement("div");
    div.textContent = html;
    return div.innerHTML;
  }

  function inPopup(target) {
    return !!(popup && popup.contains(target));
  }

  function removePopup() {
    if (popup) {
      popup.remove();
      popup = null;
    }
  }

  function clearHighlight() {
    if (highlighted) {
      highlighted.style.outline = "";
      highlighted = null;
    }
  }

  function onHover(e) {
    if (!captureMode || inPopup(e.target)) return;
    clearHighlight();
    highlighted = e.target;
    highlighted.style.outline = HIGHLIGHT;
    e.stopPropagation();
    e.preventDefault();
  }

  function onOut(e) {
    if (!captureMode || !highlighted || inPopup(e.target)) return;
    clearHighlight();
  }

  function onClick(e) {
    if (!captureMode || inPopup(e.target)) return;
    e.stopPropagation();
    e.preventDefault();
    openPopup(e.target);
  }

  function onKey(e) {
    if (e.altKey && e.shiftKey && (e.key === "C" || e.key === "c")) {
      const next = !captureMode;
      next ? enable() : disable(false);
      send({ action: "captureModeChanged", isEnabled: next });
    }
  }

  function enable() {
    if (captureMode) return;
    captureMode = true;
    if (document.body) document.body.style.cursor = "crosshair";
    document.addEventListener("click", onClick, true);
    document.addEventListener("mouseover", onHover, true);
    document.addEventListener("mouseout", onOut, true);
    notify("DOM Capture Mode Enabled. Click on elements to capture.");
  }

  function disable(temporary) {
    const wasOn = captureMode;
    captureMode = false;
    if (document.body) document.body.style.cursor = "";
    document.removeEventListener("click", onClick, true);
    document.removeEventListener("mouseover", onHover, true);
    document.removeEventListener("mouseout", onOut, true);
    clearHighlight();
    removePopup();
    if (temporary) {
      notify("DOM Capture Mode temporarily disabled for navigation. Will resume on next page.");
      return send({ action: "temporaryDisableForNavigation", lastElementId });
    }
    if (wasOn) notify("DOM Capture Mode Disabled.");
    return Promise.resolve({ success: true });
  }

  function replayClick(el) {
    setTimeout(() => {
      if (el.tagName === "A" && el.href) {
        window.location.href = el.href;
        return;
      }
      el.dispatchEvent(new MouseEvent("click", { bubbles: true, cancelable: true, view: window }));
    }, 300);
  }

  function openPopup(el) {
    removePopup();
    const html = el.outerHTML || "";
    popup = document.createElement("div");
    popup.className = POPUP_CLASS;
    popup.style.cssText = "position:fixed;top:50%;left:50%;transform:translate(-50%,-50%);background:white;" +
      "padding:15px;border-radius:5px;box-shadow:0 0 10px rgba(0,0,0,0.3);z-index:2147483647;min-width:300px;" +
      "font-family:sans-serif;color:#222";
    popup.innerHTML = `
      <h3 style="margin-top:0;font-size:16px;">Capture DOM Element</h3>
      <p style="font-size:12px;background:#f0f0f0;padding:5px;overflow:auto;max-height:80px;">
        ${escapeHtml(html.substring(0, 150))}${html.length > 150 ? "..." : ""}
      </p>
      <label style="display:block;margin-bottom:10px;font-size:14px;">Description (required):
        <input data-dc="description" style="width:100%;padding:5px;margin-top:5px;">
      </label>
      <label style="display:block;margin-bottom:10px;font-size:14px;">KPI (optional):
        <input data-dc="kpi" style="width:100%;padding:5px;margin-top:5px;">
      </label>
      <label style="display:flex;align-items:center;font-size:14px;margin-bottom:15px;">
        <input type="checkbox" data-dc="nav" style="margin-right:8px;" ${isLikelyNavigation(el) ? "checked" : ""}>
        Mark as navigation trigger (will navigate after capture)
      </label>
      <div style="display:flex;justify-content:space-between;">
        <button data-dc="cancel" style="padding:8px 12px;">Cancel</button>
        <button data-dc="confirm" style="padding:8px 12px;background:#2196F3;color:white;border:none;">Capture</button>
      </div>`;
    document.body.appendChild(popup);

    const q = (name) => popup.querySelector(`[data-dc="${name}"]`);
    q("description").focus();
    q("cancel").addEventListener("click", removePopup);
    q("confirm").addEventListener("click", async () => {
      const description = q("description").value.trim();
      const kpi = q("kpi").value.trim();
      const isNavigationTrigger = q("nav").checked;
      if (!description) {
        alert("Description is required");
        return;
      }
      const res = await send({
        action: "captureElement",
        url: location.href,
        element: elementSnapshot(el),
        description,
        kpi: kpi || null,
        isNavigationTrigger,
        lastElementId,
      });
      if (!res || !res.success) {
        const err = (res && res.error) || "unknown error";
        if (err === "Description is required") {
          alert(err);
        } else {
          notify("Error capturing element: " + err, "error");
        }
        return;
      }
      lastElementId = res.element_id;
      removePopup();
      notify("Element captured successfully");
      if (isNavigationTrigger) {
        await disable(true);
        replayClick(el);
      }
    });
  }

  // ---------------------------------------------------------------------------
  // Recorder -> page
  // ---------------------------------------------------------------------------
  function receive(msg) {
    const action = msg && msg.action;
    if (action === "enableCapture") {
      enable();
    } else if (action === "disableCapture") {
      disable(false);
    } else if (action === "checkPendingNavigation") {
      if (msg.lastElementId) lastElementId = msg.lastElementId;
      if (msg.resumeCapture) setTimeout(enable, 500);
    } else {
      return { success: false, error: "unknown action: " + action };
    }
    return { success: true, captureMode };
  }

  window.__domCapture = { receive };
  document.addEventListener("keydown", onKey, true);

  async function announce() {
    if (!/^(https?|file):$/.test(location.protocol)) return;
    const res = await send({
      action: "pageReady",
      url: location.href,
      title: document.title || "",
      framework: detectFramework(),
    });
    if (res && res.success && res.lastElementId) lastElementId = res.lastElementId;
  }

  if (document.readyState === "loading") {
    document.addEventListener("DOMContentLoaded", announce, { once: true });
  } else {
    announce();
  }
})();
"""
