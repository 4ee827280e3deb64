import fasthtml.common as fh

PAGE_CSS = """
body{font-family:system-ui,sans-serif;background:#0f172a;color:#e2e8f0;margin:0}
.container{max-width:860px;margin:0 auto;padding:32px 16px}
.badge{display:inline-block;padding:4px 10px;border-radius:6px;font-weight:600;color:white}
.badge.secure{background:#10b981}.badge.insecure{background:#ef4444}
.stats-grid{display:grid;grid-template-columns:repeat(auto-fill,minmax(150px,1fr));gap:10px;margin:20px 0}
.stats-card{background:#1e293b;border-radius:8px;padding:12px;text-align:center}
.stats-label{font-size:0.85em;opacity:0.8}.stats-number{font-size:1.6em;font-weight:700}
table.headers{width:100%;border-collapse:collapse;font-family:monospace;font-size:0.85em}
table.headers td{border-bottom:1px solid #334155;padding:4px 8px;vertical-align:top;word-break:break-all}
.footer{margin-top:30px;opacity:0.6;font-size:0.85em;text-align:center}
"""

COUNTER_LABELS = { "httpCount": "HTTP checks", "httpsCount": "HTTPS checks", "rootCount": "Home visits", "checkCount": "/check visits",
                   "apiCount": "API calls", "curlCount": "curl requests", "healthzCount": "Health pings"}


def stat_card(label, value, subtitle=""):
    return fh.Div(fh.Div(label, cls="stats-label"), fh.Div(value, cls="stats-number"),
                  fh.Div(subtitle, style="font-size:0.9em;opacity:0.8;") if subtitle else "", cls="stats-card")


def status_badge(scheme):
    secure = scheme == "https"
    return fh.Span("HTTPS" if secure else scheme.upper() or "HTTP", cls=f"badge {'secure' if secure else 'insecure'}")


def counters_grid(counts):
    return fh.Div(*[stat_card(COUNTER_LABELS.get(name, name), f"{counts.get(name, 0):,}") for name in COUNTER_LABELS],
                  cls="stats-grid", id="counters")


def headers_table(headers):
    if not headers: return fh.P("No headers received", style="opacity:0.7;")
    return fh.Table(*[fh.Tr(fh.Td(k), fh.Td(v)) for k, v in headers], cls="headers")


def info_row(label, value, **kw):
    return fh.P(fh.Strong(f"{label}: "), fh.Code(value, **kw))


def index_page(classified, enrichment, counts, status_text, generated_at):
    country = enrichment.country_code and f"{enrichment.country_name.value} ({enrichment.country_code})" or enrichment.country_name.value
    return (fh.Title("nossl.sh - is your connection encrypted?"),
            fh.Main(fh.H1(status_badge(classified.scheme), " ", status_text),
                    info_row("Your IP", classified.client_ip, id="ip"),
                    info_row("Protocol", classified.scheme.upper(), id="proto"),
                    info_row("Country", country, id="country"),
                    info_row("Reverse DNS", enrichment.reverse_dns.value, id="rdns"),
                    fh.H2("Request headers"), headers_table(classified.headers),
                    fh.H2("Checks so far"), counters_grid(counts),
                    fh.Div(f"Generated at {generated_at:%Y-%m-%d %H:%M:%S %Z}", cls="footer"), cls="container"))


def redirect_page(url):
    """Client-side redirect; the target is built from a fixed word list so it needs no escaping"""
    return ("<!DOCTYPE html><html><head><meta charset=\"utf-8\"><title>Redirecting...</title></head>"
            f"<body><script>window.location.href='{url}';</script>"
            f"<noscript><a href=\"{url}\">{url}</a></noscript></body></html>")
