from flask import render_template_string


# -----------------------------------------------------------------------------
# Sparkline builder (inline SVG chart)
# -----------------------------------------------------------------------------
def build_sparkline(points, width=320, height=60, stroke="#38bdf8"):
    """
    Tiny inline SVG sparkline.
    points: list[(day_string, count_int)], ascending by day.
    """
    head = (
        f'<svg width="{width}" height="{height}" viewBox="0 0 {width} {height}" '
        f'fill="none" stroke="{stroke}" stroke-width="2" stroke-linecap="round" '
        f'shape-rendering="geometricPrecision">'
    )
    if not points:
        return {"svg": head + "</svg>", "last_count": 0}

    counts = [p[1] for p in points]
    min_c = min(counts)
    span_c = (max(counts) - min_c) or 1

    n = len(points)
    xs = [width / 2] if n == 1 else [i * (width / (n - 1)) for i in range(n)]
    ys = [height - ((c - min_c) / span_c) * (height - 4) - 2 for c in counts]

    d_attr = " ".join(
        f"{'M' if i == 0 else 'L'}{x:.1f},{y:.1f}" for i, (x, y) in enumerate(zip(xs, ys))
    )
    return {"svg": f'{head}<path d="{d_attr}" /></svg>', "last_count": counts[-1]}


DASHBOARD_HTML = """
<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8"/>
<meta name="viewport" content="width=device-width,initial-scale=1"/>
<title>visitrack · {{ project }}</title>
<style>
body{font-family:system-ui,-apple-system,"Segoe UI",Roboto,sans-serif;background:#0f172a;color:#f8fafc;padding:2rem;line-height:1.4}
.cards{display:grid;grid-template-columns:repeat(auto-fit,minmax(180px,1fr));gap:1rem;margin-bottom:2rem}
.card{background:#1e293b;border-radius:1rem;padding:1rem 1.25rem}
.head{font-size:.7rem;color:#94a3b8;margin-bottom:.5rem}
.value{font-size:1.4rem;font-weight:600}
.sections{display:grid;grid-template-columns:repeat(auto-fit,minmax(320px,1fr));gap:1.5rem}
table{width:100%;border-collapse:collapse;font-size:.8rem}
th{text-align:left;color:#e2e8f0;border-bottom:1px solid #475569;padding:.5rem .25rem;font-size:.7rem;text-transform:uppercase}
td{border-bottom:1px solid #334155;padding:.5rem .25rem;color:#cbd5e1}
td.num{text-align:right;font-variant-numeric:tabular-nums}
</style>
</head>
<body>
<h1 style="font-size:1.2rem">Visitors · {{ project }}</h1>

<section class="cards">
  <div class="card"><div class="head">Unique visitors</div><div class="value">{{ unique }}</div></div>
  <div class="card"><div class="head">Active last {{ active_minutes }} min</div><div class="value">{{ active }}</div></div>
  <div class="card">
    <div class="head">Daily active ({{ dau_period.startDate }} → {{ dau_period.endDate }})</div>
    {{ spark_svg | safe }}
    <div class="head">Latest day: {{ spark_last }}</div>
  </div>
</section>

<section class="sections">
  <div class="card">
    <div class="head">Projects</div>
    <table>
      <tr><th>Project</th><th class="num">Visitors</th></tr>
      {% for row in projects %}
      <tr><td>{{ row.projectName }}</td><td class="num">{{ row.uniqueVisitors }}</td></tr>
      {% endfor %}
    </table>
  </div>
  {% for title, key, rows in breakdowns %}
  <div class="card">
    <div class="head">{{ title }}</div>
    <table>
      <tr><th>{{ title }}</th><th class="num">Visitors</th></tr>
      {% for row in rows %}
      <tr><td>{{ row[key] }}</td><td class="num">{{ row.visitorCount }}</td></tr>
      {% endfor %}
    </table>
  </div>
  {% endfor %}
</section>
</body>
</html>
"""


def render_dashboard(engine, project="All", top=10):
    dau = engine.daily_active_users(project)
    spark = build_sparkline([(p["date"], p["uniqueVisitors"]) for p in dau["dailyActiveUsers"]])
    return render_template_string(
        DASHBOARD_HTML,
        project=project,
        unique=engine.unique_count(project),
        active=len(engine.active_now()),
        active_minutes=engine.active_minutes,
        dau_period=dau["period"],
        spark_svg=spark["svg"],
        spark_last=spark["last_count"],
        projects=engine.visits_by_project(),
        breakdowns=[
            ("Locations", "location", engine.top_n("location", top)),
            ("Devices", "device", engine.top_n("device", top)),
            ("Browsers", "browser", engine.top_n("browser", top)),
        ],
    )
