import logging
from typing import NamedTuple

from flask import Blueprint, Flask, Response, current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from . import config
from .aggregation import AggregationEngine
from .dashboard import render_dashboard
from .enrichment import GeoLocator, client_ip
from .errors import AnalyticsError, InvalidInput
from .export import export_visitors
from .resolver import VisitResolver, utc_now
from .store import VisitorStore

logger = logging.getLogger(__name__)

# 1x1 transparent gif bytes (tracking pixel)
PIXEL_BYTES = (
    b"GIF89a"
    b"\x01\x00\x01\x00"
    b"\x80"
    b"\x00"
    b"\x00"
    b"\x00\x00\x00"
    b"\xff\xff\xff"
    b"\x21\xf9\x04\x01\x00\x00\x00\x00"
    b"\x2c\x00\x00\x00\x00\x01\x00\x01\x00\x00"
    b"\x02\x02\x44\x01\x00"
    b"\x3b"
)


class Services(NamedTuple):
    store: VisitorStore
    resolver: VisitResolver
    engine: AggregationEngine


def services() -> Services:
    return current_app.extensions["visitrack"]


def dump(records):
    return [record.to_dict() for record in records]


api = Blueprint("api", __name__, url_prefix="/api")


# -----------------------------------------------------------------------------
# Ingest routes
# -----------------------------------------------------------------------------
@api.route("/visit", methods=["POST", "OPTIONS"])
def track_visit():
    """
    Body: { "projectName": "blog" }. The visitor is identified by client IP.
    """
    if request.method == "OPTIONS":
        return ("", 200)

    data = request.get_json(silent=True) or {}
    result = services().resolver.record_visit(
        client_ip(request), data.get("projectName"), request.headers.get("User-Agent")
    )
    return jsonify({
        "message": "Visitor tracked successfully",
        "projectName": result.record.project_name,
        "uniqueVisitors": result.unique_visitors,
        "created": result.created,
    })


@api.route("/visits/batch", methods=["POST"])
def track_visits():
    """
    Body: { "visits": [ {ipAddress, projectName, userAgent}, ... ] }.
    Reports per-hit success; one bad hit does not fail the others.
    """
    data = request.get_json(silent=True) or {}
    hits = data.get("visits")
    if not isinstance(hits, list):
        raise InvalidInput("visits must be a list")
    results = services().resolver.record_visits(hits)
    succeeded = sum(1 for r in results if r["ok"])
    return jsonify({"results": results, "succeeded": succeeded, "failed": len(results) - succeeded})


@api.route("/pixel.gif")
def pixel():
    """
    Tracking pixel: <img src="/api/pixel.gif?project=blog">
    """
    services().resolver.record_visit(
        client_ip(request), request.args.get("project"), request.headers.get("User-Agent")
    )
    resp = Response(PIXEL_BYTES, mimetype="image/gif")
    resp.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, max-age=0"
    resp.headers["Pragma"] = "no-cache"
    resp.headers["Expires"] = "0"
    return resp


# -----------------------------------------------------------------------------
# Visitor records
# -----------------------------------------------------------------------------
@api.route("/visits")
def all_visitors():
    return jsonify(dump(services().engine.all_visitors()))


@api.route("/visitor/<int:visitor_id>")
def get_visitor(visitor_id):
    return jsonify(services().engine.get_visitor(visitor_id).to_dict())


@api.route("/visit/<int:visitor_id>", methods=["PUT"])
def update_visitor(visitor_id):
    record = services().engine.update_visitor(visitor_id, request.get_json(silent=True))
    return jsonify(record.to_dict())


@api.route("/visit/<int:visitor_id>", methods=["DELETE"])
def delete_visitor(visitor_id):
    services().engine.delete_visitor(visitor_id)
    return jsonify({"message": "Visitor deleted successfully"})


@api.route("/visit-ip/<ip_address>")
def visitors_by_ip(ip_address):
    return jsonify(dump(services().engine.visitors_by_ip(ip_address)))


@api.route("/filter-visit")
def filter_visitors():
    args = request.args
    result = services().engine.filter_search(
        {key: args.get(key) for key in ("device", "browser", "projectName", "location", "startDate", "endDate")},
        page=args.get("page", 1, type=int),
        limit=args.get("limit", config.PAGE_LIMIT, type=int),
        sort=args.get("sort", "-lastVisit"),
    )
    result["visitors"] = dump(result["visitors"])
    return jsonify(result)


@api.route("/visits-by-date")
def visitors_by_date():
    result = services().engine.date_range_search(request.args.get("startDate"), request.args.get("endDate"))
    result["visitors"] = dump(result["visitors"])
    return jsonify(result)


@api.route("/export")
def export():
    fmt = request.args.get("format", "json")
    payload = export_visitors(services().engine.all_visitors(), fmt)
    if fmt == "csv":
        return Response(
            payload,
            mimetype="text/csv",
            headers={"Content-Disposition": "attachment; filename=visitors.csv"},
        )
    return jsonify(payload)


# -----------------------------------------------------------------------------
# Analytics
# -----------------------------------------------------------------------------
@api.route("/visit/<project_name>")
def visitor_count(project_name):
    return jsonify({"projectName": project_name, "uniqueVisitors": services().engine.unique_count(project_name)})


@api.route("/total-visits")
def total_visits():
    return jsonify(services().engine.total_visits())


@api.route("/visit-growth")
def visitor_growth():
    return jsonify(services().engine.growth())


@api.route("/visit-trend/<project_name>")
def visitor_trend(project_name):
    period = request.args.get("period", "daily")
    return jsonify({
        "projectName": project_name,
        "period": period,
        "trend": services().engine.trend(project_name, period),
    })


@api.route("/visit-statistics/<project_name>")
def visitor_statistics(project_name):
    return jsonify(services().engine.statistics(project_name))


@api.route("/unique-visitors-daily/<project_name>")
def unique_visitors_daily(project_name):
    return jsonify(services().engine.daily_active_users(
        project_name, request.args.get("startDate"), request.args.get("endDate")
    ))


@api.route("/active-visitors")
def active_visitors():
    engine = services().engine
    minutes = request.args.get("minutes", engine.active_minutes, type=int)
    visitors = engine.active_now(minutes)
    return jsonify({"minutes": minutes, "activeVisitors": len(visitors), "visitors": dump(visitors)})


@api.route("/locations")
def locations():
    return jsonify(services().engine.top_n("location", request.args.get("limit", type=int)))


@api.route("/devices")
def devices():
    return jsonify(services().engine.top_n("device", request.args.get("limit", type=int)))


@api.route("/browsers")
def browsers():
    return jsonify(services().engine.top_n("browser", request.args.get("limit", type=int)))


@api.route("/browser-os-stats")
def browser_os_stats():
    return jsonify(services().engine.browser_os_stats())


# -----------------------------------------------------------------------------
# App factory
# -----------------------------------------------------------------------------
def pick_cors_origin(request_origin: str | None) -> str | None:
    """
    Return allowed origin if it matches our allowlist.
    """
    if not request_origin:
        return None
    for allowed in current_app.config["CORS_ALLOW_ORIGINS"]:
        if request_origin == allowed:
            return allowed
    return None


def create_app(db_path=None, geoip_path=None, clock=None, cors_origins=None):
    logging.basicConfig(
        level=config.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = Flask(__name__)
    app.config["CORS_ALLOW_ORIGINS"] = config.CORS_ALLOW_ORIGINS if cors_origins is None else cors_origins

    clock = clock or utc_now
    store = VisitorStore(db_path or config.DB_PATH, timeout=config.DB_TIMEOUT)
    store.ensure_schema()
    geo = GeoLocator(config.GEOIP_DB_PATH if geoip_path is None else geoip_path)
    app.extensions["visitrack"] = Services(
        store=store,
        resolver=VisitResolver(store, geo, clock=clock),
        engine=AggregationEngine(
            store, clock=clock, dau_days=config.DAU_DAYS, active_minutes=config.ACTIVE_MINUTES
        ),
    )
    app.register_blueprint(api)

    @app.after_request
    def add_cors_headers(resp):
        """
        Attach CORS headers if this was a cross-origin call from an allowed Origin.
        """
        origin = pick_cors_origin(request.headers.get("Origin"))

        if origin:
            req_method = request.headers.get("Access-Control-Request-Method", "GET,POST,OPTIONS")
            req_headers = request.headers.get("Access-Control-Request-Headers", "Content-Type")

            resp.headers["Access-Control-Allow-Origin"] = origin
            resp.headers["Vary"] = "Origin"
            resp.headers["Access-Control-Allow-Credentials"] = "false"
            resp.headers["Access-Control-Allow-Methods"] = req_method
            resp.headers["Access-Control-Allow-Headers"] = req_headers
            resp.headers["Access-Control-Max-Age"] = "600"
        return resp

    @app.errorhandler(AnalyticsError)
    def handle_analytics_error(exc):
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(Exception)
    def handle_unexpected(exc):
        if isinstance(exc, HTTPException):
            return exc
        logger.exception("unhandled error on %s %s", request.method, request.path)
        return jsonify({"error": "Internal server error", "details": None}), 500

    @app.route("/stats")
    def stats():
        project = request.args.get("project", config.ALL_PROJECTS)
        return render_dashboard(services().engine, project)

    @app.route("/healthz")
    def healthz():
        return "ok", 200

    return app


if __name__ == "__main__":
    # Dev mode, container uses gunicorn "visitrack.app:create_app()"
    create_app().run(host="0.0.0.0", port=8000)
