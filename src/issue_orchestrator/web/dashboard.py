"""Status page HTML with inline CSS and vanilla JS."""


def get_dashboard_html() -> str:
    return """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>Issue Orchestrator</title>
<style>
  :root {
    --bg: #0d1117; --surface: #161b22; --border: #30363d;
    --text: #e6edf3; --text-muted: #8b949e; --text-dim: #6e7681;
    --pending: #8b949e; --in_progress: #58a6ff; --completed: #3fb950;
    --failed: #f85149; --split: #d29922;
  }
  * { margin: 0; padding: 0; box-sizing: border-box; }
  body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Helvetica, Arial, sans-serif;
         background: var(--bg); color: var(--text); line-height: 1.5; }
  .container { max-width: 960px; margin: 0 auto; padding: 24px 16px; }

  header { display: flex; justify-content: space-between; align-items: baseline;
           padding-bottom: 16px; border-bottom: 1px solid var(--border); margin-bottom: 24px; }
  header h1 { font-size: 20px; font-weight: 600; }
  .run-meta { font-size: 12px; color: var(--text-dim); }

  .summary { display: flex; gap: 16px; align-items: center; margin-bottom: 24px; flex-wrap: wrap; }
  .stat { display: flex; align-items: center; gap: 6px; font-size: 14px; }
  .stat .dot { width: 10px; height: 10px; border-radius: 50%; display: inline-block; }
  .progress-bar { flex: 1; min-width: 120px; height: 8px; background: var(--surface);
                  border-radius: 4px; overflow: hidden; border: 1px solid var(--border); }
  .progress-bar .fill { height: 100%; background: var(--completed); transition: width 0.3s; }
  .progress-pct { font-size: 13px; color: var(--text-muted); min-width: 40px; }

  .issue-list { display: flex; flex-direction: column; gap: 2px; }
  .issue-card { background: var(--surface); border: 1px solid var(--border);
                border-radius: 8px; padding: 12px 16px; }
  .issue-header { display: flex; align-items: center; gap: 10px; }
  .badge { display: inline-block; padding: 2px 10px; border-radius: 12px; font-size: 11px;
           font-weight: 600; text-transform: uppercase; letter-spacing: 0.5px; }
  .issue-title { font-weight: 600; font-size: 14px; }
  .issue-number { font-size: 12px; color: var(--text-dim); font-family: monospace; }
  .issue-details { margin-top: 6px; font-size: 13px; color: var(--text-muted); display: flex;
                   flex-direction: column; gap: 3px; }
  .issue-details code { background: var(--bg); padding: 1px 5px; border-radius: 3px; font-size: 12px; }
  .issue-error { color: var(--failed); white-space: pre-wrap; font-family: monospace; font-size: 12px; }

  .empty { text-align: center; padding: 48px; color: var(--text-muted); }
  .empty h3 { margin-bottom: 8px; }
</style>
</head>
<body>
<div class="container">
  <header>
    <h1>Issue Orchestrator</h1>
    <span class="run-meta" id="run-meta"></span>
  </header>
  <div id="content">
    <div class="empty"><h3>Loading...</h3></div>
  </div>
</div>

<script>
const STATUSES = ['pending', 'in_progress', 'completed', 'failed', 'split'];

async function fetchJSON(path) {
  const res = await fetch(path);
  if (!res.ok) return null;
  return res.json();
}

async function loadDashboard() {
  const content = document.getElementById('content');
  const [status, issues] = await Promise.all([
    fetchJSON('/api/status'),
    fetchJSON('/api/issues'),
  ]);

  if (!status || !status.counts) {
    content.innerHTML = '<div class="empty"><h3>No run yet</h3><p>Start one with <code>iorch run</code></p></div>';
    return;
  }

  document.getElementById('run-meta').textContent =
    `started ${new Date(status.started_at).toLocaleString()} · updated ${new Date(status.updated_at).toLocaleString()}`;

  let html = '<div class="summary">';
  for (const s of STATUSES) {
    html += `<span class="stat"><span class="dot" style="background:var(--${s})"></span> ${status.counts[s]} ${s.replace('_', ' ')}</span>`;
  }
  html += `<div class="progress-bar"><div class="fill" style="width:${status.progress_pct}%"></div></div>
    <span class="progress-pct">${status.progress_pct}%</span></div>`;

  html += '<div class="issue-list">';
  for (const issue of issues || []) {
    html += renderIssue(issue);
  }
  html += '</div>';
  content.innerHTML = html;
}

function renderIssue(issue) {
  let details = '';
  if (issue.branch) {
    const base = issue.base_branch ? ` from <code>${esc(issue.base_branch)}</code>` : '';
    details += `<div>Branch: <code>${esc(issue.branch)}</code>${base}</div>`;
  }
  if (issue.pr_number) {
    details += `<div>PR #${issue.pr_number}</div>`;
  }
  if (issue.sub_issues && issue.sub_issues.length > 0) {
    details += `<div>Split into: ${issue.sub_issues.map(n => '#' + n).join(', ')}</div>`;
  }
  if (issue.completed_at) {
    details += `<div>Completed: ${new Date(issue.completed_at).toLocaleString()}</div>`;
  }
  if (issue.error) {
    details += `<div class="issue-error">${esc(issue.error)}</div>`;
  }

  return `<div class="issue-card">
    <div class="issue-header">
      <span class="badge" style="color:var(--${issue.status})">${esc(issue.status.replace('_', ' '))}</span>
      <span class="issue-title">${esc(issue.title)}</span>
      <span class="issue-number">#${issue.number}</span>
    </div>
    ${details ? `<div class="issue-details">${details}</div>` : ''}
  </div>`;
}

function esc(s) {
  if (!s) return '';
  const d = document.createElement('div');
  d.textContent = s;
  return d.innerHTML;
}

loadDashboard();
setInterval(loadDashboard, 10000);
</script>
</body>
</html>"""
