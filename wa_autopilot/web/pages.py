"""
Dashboard Page - Server-Rendered HTML
======================================

One page. The initial state (session status, provider, prompt, blacklist,
auto-reply switches) is rendered server-side; everything after that is
driven by fetch() calls to the REST API and the /ws event feed.
"""

from html import escape


# ══════════════════════════════════════════════════════════════════
#  SHARED CSS
# ══════════════════════════════════════════════════════════════════

SHARED_CSS = """
    @import url('https://fonts.googleapis.com/css2?family=Inter:wght@300;400;500;600;700;800&display=swap');

    :root {
        --bg-dark: #0b1410;
        --bg-card: rgba(255,255,255,0.035);
        --bg-card-hover: rgba(255,255,255,0.06);
        --border: rgba(255,255,255,0.07);
        --border-hover: rgba(37,211,102,0.4);
        --text: #e2e8f0;
        --text-muted: #6b7f75;
        --accent-1: #25d366;
        --accent-2: #34b7f1;
        --gradient: linear-gradient(135deg, #128c7e 0%, #25d366 100%);
    }

    * { margin: 0; padding: 0; box-sizing: border-box; }

    body {
        font-family: 'Inter', -apple-system, BlinkMacSystemFont, sans-serif;
        background: var(--bg-dark);
        background-image:
            radial-gradient(ellipse 80% 50% at 50% -20%, rgba(37,211,102,0.12), transparent),
            radial-gradient(ellipse 60% 40% at 80% 100%, rgba(52,183,241,0.06), transparent);
        min-height: 100vh;
        color: var(--text);
    }

    @keyframes fadeInUp {
        from { opacity: 0; transform: translateY(20px); }
        to   { opacity: 1; transform: translateY(0); }
    }

    .card {
        background: var(--bg-card);
        backdrop-filter: blur(20px);
        border: 1px solid var(--border);
        border-radius: 16px;
        padding: 24px;
        transition: border-color 0.3s ease;
        animation: fadeInUp 0.5s ease-out both;
    }
    .card:hover { border-color: var(--border-hover); }

    .btn {
        background: var(--gradient);
        color: #fff;
        border: none;
        padding: 10px 22px;
        border-radius: 10px;
        font-weight: 600;
        font-size: 13px;
        cursor: pointer;
        font-family: inherit;
        transition: all 0.25s ease;
    }
    .btn:hover { opacity: 0.9; transform: translateY(-1px); }
    .btn-ghost { background: var(--bg-card); border: 1px solid var(--border); color: var(--text); }
    .btn-red { background: rgba(248,113,113,0.15); color: #f87171; border: 1px solid rgba(248,113,113,0.3); }

    .badge {
        padding: 4px 10px;
        border-radius: 6px;
        font-size: 10px;
        font-weight: 600;
        text-transform: uppercase;
        letter-spacing: 0.4px;
    }
    .badge.ready        { background: rgba(52,211,153,0.15); color: #34d399; }
    .badge.pairing      { background: rgba(251,191,36,0.15); color: #fbbf24; }
    .badge.offline      { background: rgba(148,163,184,0.15); color: #94a3b8; }
    .badge.error        { background: rgba(248,113,113,0.15); color: #f87171; }

    input[type="text"], select, textarea {
        background: rgba(255,255,255,0.05);
        border: 1px solid var(--border);
        padding: 10px 14px;
        border-radius: 10px;
        color: var(--text);
        font-size: 13px;
        font-family: inherit;
        width: 100%;
    }
    textarea { min-height: 120px; resize: vertical; }
    input:focus, select:focus, textarea:focus {
        outline: none;
        border-color: var(--accent-1);
        box-shadow: 0 0 0 3px rgba(37,211,102,0.15);
    }

    code {
        background: rgba(255,255,255,0.06);
        padding: 2px 7px;
        border-radius: 5px;
        font-size: 12px;
        font-family: 'JetBrains Mono', 'Fira Code', monospace;
    }
"""

# Plain string so the braces need no escaping
DASHBOARD_JS = """
const log = document.getElementById('event-log');
const statusBadge = document.getElementById('session-state');
const qrBox = document.getElementById('qr-box');
let qr = null;

function addLog(event, data) {
    const row = document.createElement('div');
    row.className = 'log-row log-' + event;
    const time = new Date().toLocaleTimeString();
    row.innerHTML = '<span class="log-time">' + time + '</span><strong>' + event + '</strong> ';
    const body = document.createElement('span');
    body.textContent = JSON.stringify(data);
    row.appendChild(body);
    log.prepend(row);
    while (log.children.length > 200) log.removeChild(log.lastChild);
}

function setState(state) {
    const cls = {ready: 'ready', awaiting_pairing: 'pairing', disconnected: 'error'}[state] || 'offline';
    statusBadge.className = 'badge ' + cls;
    statusBadge.textContent = state.replace('_', ' ');
    if (state !== 'awaiting_pairing') { qrBox.innerHTML = ''; qr = null; }
}

function showQr(code) {
    qrBox.innerHTML = '';
    qr = new QRCode(qrBox, {text: code, width: 240, height: 240});
}

async function api(method, url, body) {
    const options = {method: method, headers: {'Content-Type': 'application/json'}};
    if (body !== undefined) options.body = JSON.stringify(body);
    const response = await fetch(url, options);
    const data = await response.json().catch(() => ({}));
    if (!response.ok) {
        addLog('error', {url: url, detail: data.detail || response.statusText});
        throw new Error(data.detail || response.statusText);
    }
    return data;
}

function connect() {
    const proto = location.protocol === 'https:' ? 'wss' : 'ws';
    const ws = new WebSocket(proto + '://' + location.host + '/ws');
    ws.onmessage = (msg) => {
        const payload = JSON.parse(msg.data);
        const data = payload.data || {};
        addLog(payload.event, data);
        if (payload.event === 'qr-code') { setState('awaiting_pairing'); showQr(data.qr); }
        if (payload.event === 'ready') setState('ready');
        if (payload.event === 'disconnected') setState('disconnected');
        if (payload.event === 'status' && data.state) setState(data.state);
        if (payload.event === 'session-cleared') setState('uninitialized');
    };
    ws.onclose = () => setTimeout(connect, 2000);
    window.dashboardSocket = ws;
}

function command(name, payload) {
    window.dashboardSocket.send(JSON.stringify({command: name, payload: payload || {}}));
}

document.getElementById('btn-start').onclick = () => command('start-session');
document.getElementById('btn-stop').onclick = () => command('stop-session');
document.getElementById('btn-clear').onclick = () => {
    if (confirm('Delete the saved WhatsApp session? You will need to scan a new QR code.')) command('clear-session');
};

document.getElementById('send-form').onsubmit = async (e) => {
    e.preventDefault();
    await api('POST', '/api/whatsapp/send', {
        to: document.getElementById('send-to').value,
        message: document.getElementById('send-text').value,
    });
};

document.getElementById('provider-form').onsubmit = async (e) => {
    e.preventDefault();
    const data = await api('PUT', '/api/ai/provider', {
        provider: document.getElementById('provider').value, hotReload: true,
    });
    addLog('provider', data);
};

document.getElementById('prompt-form').onsubmit = async (e) => {
    e.preventDefault();
    await api('PUT', '/api/ai/prompt', {prompt: document.getElementById('prompt').value, hotReload: true});
};

document.getElementById('blacklist-form').onsubmit = async (e) => {
    e.preventDefault();
    const data = await api('PUT', '/api/ai/blacklist', {blacklistWords: document.getElementById('blacklist').value});
    addLog('blacklist', data);
};

document.getElementById('btn-test-blacklist').onclick = async () => {
    const data = await api('POST', '/api/ai/blacklist/test', {message: document.getElementById('blacklist-test').value});
    addLog('blacklist-test', data);
};

document.querySelectorAll('.auto-reply-toggle').forEach((box) => {
    box.onchange = async () => {
        const body = {};
        body[box.name] = box.checked;
        await api('PUT', '/api/ai/auto-reply', body);
    };
});

async function loadProducts() {
    const products = await api('GET', '/api/products');
    const body = document.getElementById('product-rows');
    body.replaceChildren();
    if (!products.length) {
        const row = body.insertRow();
        const cell = row.insertCell();
        cell.colSpan = 4;
        cell.className = 'empty-state';
        cell.textContent = 'No products yet.';
        return;
    }
    for (const p of products) {
        const row = body.insertRow();
        for (const value of [p.name, p.category, p.price || '-', p.stock === 0 ? 'unlimited' : p.stock]) {
            row.insertCell().textContent = String(value);
        }
    }
}

connect();
loadProducts();
"""


def _badge_class(state: str) -> str:
    return {
        "ready": "ready",
        "awaiting_pairing": "pairing",
        "disconnected": "error",
    }.get(state, "offline")


def render_dashboard(status: dict, provider: dict, prompt: str, blacklist: str,
                     auto_reply: dict, stats: dict) -> str:
    """Render the single-page dashboard."""

    provider_options = "".join(
        f'<option value="{name}"{" selected" if name == provider["currentProvider"] else ""}>'
        f'{name}{"" if provider["providerConfig"][name]["hasApiKey"] else " (no API key)"}</option>'
        for name in provider["availableProviders"]
    )

    toggles = ""
    for key, label in (("enabled", "Auto-reply enabled"),
                       ("privateChats", "Reply in private chats"),
                       ("groups", "Reply in groups")):
        checked = " checked" if auto_reply.get(key) else ""
        toggles += (
            f'<label class="toggle"><input type="checkbox" class="auto-reply-toggle" '
            f'name="{key}"{checked}> {label}</label>'
        )

    state = status["state"]

    return f"""<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Dashboard - WA Autopilot</title>
    <script src="https://cdnjs.cloudflare.com/ajax/libs/qrcodejs/1.0.0/qrcode.min.js"></script>
    <style>
        {SHARED_CSS}

        .container {{ max-width: 1400px; margin: 0 auto; padding: 24px; }}

        header {{
            display: flex; justify-content: space-between; align-items: center;
            padding: 20px 28px; margin-bottom: 24px;
        }}
        .logo {{
            font-size: 22px; font-weight: 800;
            background: var(--gradient);
            -webkit-background-clip: text; -webkit-text-fill-color: transparent;
        }}
        .grid {{ display: grid; grid-template-columns: repeat(auto-fit, minmax(380px, 1fr)); gap: 20px; margin-bottom: 20px; }}
        .section-title {{ font-size: 14px; font-weight: 700; margin-bottom: 14px; }}
        .form-stack {{ display: flex; flex-direction: column; gap: 10px; }}
        .row {{ display: flex; gap: 10px; flex-wrap: wrap; }}
        .hint {{ color: var(--text-muted); font-size: 12px; }}
        #qr-box {{ display: flex; justify-content: center; margin-top: 16px; }}
        #qr-box img, #qr-box canvas {{ background: #fff; padding: 10px; border-radius: 10px; }}
        .toggle {{ display: block; margin: 8px 0; font-size: 13px; }}
        .stats {{ display: flex; gap: 24px; }}
        .stat-val {{ font-size: 24px; font-weight: 800; }}
        .stat-label {{ color: var(--text-muted); font-size: 11px; text-transform: uppercase; }}
        #event-log {{ max-height: 360px; overflow-y: auto; font-size: 12px; font-family: 'JetBrains Mono', monospace; }}
        .log-row {{ padding: 6px 0; border-bottom: 1px solid var(--border); word-break: break-all; }}
        .log-time {{ color: var(--text-muted); margin-right: 8px; }}
        .log-error strong, .log-message-blocked strong {{ color: #f87171; }}
        .log-ai-response strong {{ color: var(--accent-1); }}
        table {{ width: 100%; border-collapse: collapse; font-size: 13px; }}
        th, td {{ text-align: left; padding: 8px; border-bottom: 1px solid var(--border); }}
        th {{ color: var(--text-muted); font-size: 11px; text-transform: uppercase; }}
        .empty-state {{ color: var(--text-muted); text-align: center; padding: 16px; }}
    </style>
</head>
<body>
    <div class="container">
        <header class="card">
            <div class="logo">WA Autopilot</div>
            <span id="session-state" class="badge {_badge_class(state)}">{state.replace("_", " ")}</span>
        </header>

        <div class="grid">
            <div class="card">
                <div class="section-title">📱 WhatsApp Session</div>
                <div class="row">
                    <button id="btn-start" class="btn">Start</button>
                    <button id="btn-stop" class="btn btn-ghost">Stop</button>
                    <button id="btn-clear" class="btn btn-red">Clear Session</button>
                </div>
                <p class="hint" style="margin-top:12px;">
                    {"Saved session found, starting resumes it." if status["hasCredentials"] else "No saved session, a QR code will appear here."}
                    {"<br><strong>Logged out from the phone: clear the session and scan again.</strong>" if status["needsReauth"] else ""}
                </p>
                <div id="qr-box"></div>
            </div>

            <div class="card">
                <div class="section-title">✉️ Send Message</div>
                <form id="send-form" class="form-stack">
                    <input type="text" id="send-to" placeholder="Phone (e.g. 628123456789) or chat id" required>
                    <textarea id="send-text" placeholder="Message" required></textarea>
                    <button type="submit" class="btn">Send</button>
                </form>
            </div>

            <div class="card">
                <div class="section-title">📊 Stats</div>
                <div class="stats">
                    <div><div class="stat-val">{stats["totalUsers"]}</div><div class="stat-label">Chats in memory</div></div>
                    <div><div class="stat-val">{stats["totalMessages"]}</div><div class="stat-label">Stored turns</div></div>
                </div>
                <div class="section-title" style="margin-top:20px;">🤖 Auto-Reply</div>
                {toggles}
            </div>
        </div>

        <div class="grid">
            <div class="card">
                <div class="section-title">🧠 AI Provider</div>
                <form id="provider-form" class="form-stack">
                    <select id="provider">{provider_options}</select>
                    <button type="submit" class="btn">Switch Provider</button>
                </form>
                <div class="section-title" style="margin-top:20px;">📝 System Prompt</div>
                <form id="prompt-form" class="form-stack">
                    <textarea id="prompt">{escape(prompt)}</textarea>
                    <button type="submit" class="btn">Save Prompt</button>
                </form>
            </div>

            <div class="card">
                <div class="section-title">🚫 Blacklist</div>
                <form id="blacklist-form" class="form-stack">
                    <textarea id="blacklist" placeholder="comma,separated,words">{escape(blacklist)}</textarea>
                    <button type="submit" class="btn">Save Blacklist</button>
                </form>
                <p class="hint" style="margin:12px 0 8px;">Partial matches also block (e.g. <code>ass</code> blocks "class").</p>
                <div class="row">
                    <input type="text" id="blacklist-test" placeholder="Test a message" style="flex:1;">
                    <button type="button" id="btn-test-blacklist" class="btn btn-ghost">Test</button>
                </div>
            </div>
        </div>

        <div class="grid">
            <div class="card">
                <div class="section-title">📡 Live Events</div>
                <div id="event-log"></div>
            </div>
            <div class="card">
                <div class="section-title">🛒 Products</div>
                <table>
                    <thead><tr><th>Name</th><th>Category</th><th>Price</th><th>Stock</th></tr></thead>
                    <tbody id="product-rows"></tbody>
                </table>
            </div>
        </div>
    </div>
    <script>{DASHBOARD_JS}</script>
</body>
</html>"""
