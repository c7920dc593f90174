"""HTML/CSS/JS for the status page - single page, no build step."""

DASHBOARD_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>Claude Relay Status</title>
<style>
:root {
	--bg: #0d1117;
	--bg-card: #161b22;
	--border: #30363d;
	--text: #c9d1d9;
	--text-dim: #8b949e;
	--text-bright: #f0f6fc;
	--accent: #58a6ff;
	--green: #3fb950;
	--red: #f85149;
	--yellow: #d29922;
	--mono: "SF Mono", "Cascadia Code", "Fira Code", Consolas, monospace;
}
* { margin: 0; padding: 0; box-sizing: border-box; }
body {
	background: var(--bg);
	color: var(--text);
	font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Helvetica, Arial, sans-serif;
	line-height: 1.5;
}
.header {
	display: flex;
	align-items: center;
	justify-content: space-between;
	padding: 16px 24px;
	border-bottom: 1px solid var(--border);
	background: var(--bg-card);
}
.header h1 { font-size: 18px; color: var(--text-bright); font-weight: 600; }
.sse-status { display: flex; align-items: center; gap: 6px; font-size: 13px; color: var(--text-dim); }
.sse-dot { width: 8px; height: 8px; border-radius: 50%; background: var(--red); }
.sse-dot.connected { background: var(--green); }
.container { padding: 24px; max-width: 1200px; margin: 0 auto; }
h2 { font-size: 14px; color: var(--text-dim); text-transform: uppercase; margin: 16px 0 8px; }
.agent {
	background: var(--bg-card);
	border: 1px solid var(--border);
	border-radius: 6px;
	padding: 12px 16px;
	margin-bottom: 8px;
}
.agent.worker { margin-left: 32px; }
.agent .title { display: flex; justify-content: space-between; color: var(--text-bright); }
.agent .meta { font-size: 12px; color: var(--text-dim); }
.phase { font-family: var(--mono); font-size: 12px; }
.phase.completed { color: var(--green); }
.phase.failed { color: var(--red); }
.phase.executing, .phase.planning, .phase.summarizing { color: var(--yellow); }
pre {
	font-family: var(--mono);
	font-size: 12px;
	color: var(--text-dim);
	white-space: pre-wrap;
	max-height: 160px;
	overflow-y: auto;
	margin-top: 8px;
}
.empty { color: var(--text-dim); font-size: 13px; }
</style>
</head>
<body>
<div class="header">
	<h1>Claude Relay</h1>
	<div class="sse-status"><span class="sse-dot" id="sse-dot"></span><span id="sse-label">disconnected</span></div>
</div>
<div class="container">
	<h2>Active</h2>
	<div id="active"></div>
	<h2>Recently completed</h2>
	<div id="history"></div>
</div>
<script>
const agents = new Map();
let history = [];

function esc(s) {
	const d = document.createElement("div");
	d.textContent = s == null ? "" : String(s);
	return d.innerHTML;
}

function card(a, withOutput) {
	const cost = a.cost_usd != null ? " &middot; $" + a.cost_usd.toFixed(4) : "";
	const progress = a.progress ? " &middot; " + esc(a.progress) : "";
	const out = withOutput && a.recent_output.length
		? "<pre>" + esc(a.recent_output.slice(-10).join("\\n")) + "</pre>" : "";
	return '<div class="agent ' + a.role + '"><div class="title"><span>' + esc(a.description)
		+ '</span><span class="phase ' + a.phase + '">' + a.phase + '</span></div>'
		+ '<div class="meta">' + esc(a.id) + progress + cost + '</div>' + out + '</div>';
}

function render() {
	const live = [...agents.values()].filter(a => a.phase !== "completed" && a.phase !== "failed");
	const ordered = [];
	for (const a of live.filter(a => a.role === "orchestrator")) {
		ordered.push(a);
		ordered.push(...live.filter(w => w.parent_id === a.id));
	}
	document.getElementById("active").innerHTML = ordered.length
		? ordered.map(a => card(a, true)).join("") : '<div class="empty">Nothing running</div>';
	document.getElementById("history").innerHTML = history.length
		? history.slice().reverse().map(a => card(a, false)).join("") : '<div class="empty">No history yet</div>';
}

function connect() {
	const src = new EventSource("/api/agents/stream");
	const dot = document.getElementById("sse-dot");
	const label = document.getElementById("sse-label");
	src.onopen = () => { dot.classList.add("connected"); label.textContent = "live"; };
	src.onerror = () => { dot.classList.remove("connected"); label.textContent = "reconnecting"; };
	src.addEventListener("snapshot", e => {
		const snap = JSON.parse(e.data);
		agents.clear();
		snap.agents.forEach(a => agents.set(a.id, a));
		history = snap.recently_completed;
		render();
	});
	const upsert = e => { const ev = JSON.parse(e.data); agents.set(ev.agent.id, ev.agent); render(); };
	["agent-registered", "agent-updated", "agent-output"].forEach(n => src.addEventListener(n, upsert));
	["agent-completed", "agent-failed"].forEach(n => src.addEventListener(n, e => {
		const ev = JSON.parse(e.data);
		agents.set(ev.agent.id, ev.agent);
		history.push(ev.agent);
		history = history.slice(-50);
		render();
	}));
	src.addEventListener("agent-removed", e => { agents.delete(JSON.parse(e.data).agent.id); render(); });
}

render();
connect();
</script>
</body>
</html>
"""
