import logging

from flask import Flask, abort, flash, jsonify, redirect, render_template, request, url_for

import app_runtime
from classes.Controller import CommandRejectedError, InvalidDurationError

STATUS_COLORS = {
    "active": "bg-success",
    "loading": "bg-warning",
    "inactive": "bg-info",
    "error": "bg-danger",
}


def create_app(runtime, conf=None):
    conf = conf or app_runtime.DEFAULT_CONF
    poll_sec = conf.get("poll_seconds", 1)

    app = Flask(__name__)
    app.secret_key = conf.get("web", {}).get("secret_key", "change-me")
    app.config["RUNTIME"] = runtime

    @app.get("/")
    def dashboard():
        # the status card is loaded and refreshed by HTMX
        view = runtime.view()
        return render_template("dashboard.html", view=view, poll_sec=poll_sec, colors=STATUS_COLORS)

    @app.get("/partial/status")
    def partial_status():
        view = runtime.view()
        return render_template("_status_partial.html", view=view, colors=STATUS_COLORS)

    @app.post("/zones/select")
    def select_zone():
        try:
            zid = int(request.form.get("zone") or 0)
        except ValueError:
            abort(400)
        if not runtime.call(runtime.controller.select_zone, zid):
            abort(404)
        return redirect(url_for("dashboard"))

    @app.post("/session/start")
    def start_session():
        view = runtime.view()
        if view.selected_zone is None:
            abort(400)
        try:
            runtime.call(runtime.controller.start, view.selected_zone, request.form.get("minutes"))
        except (InvalidDurationError, CommandRejectedError) as e:
            flash(str(e), "warning")
        return redirect(url_for("dashboard"))

    @app.post("/session/stop")
    def stop_session():
        try:
            runtime.call(runtime.controller.stop)
        except CommandRejectedError as e:
            flash(str(e), "warning")
        return redirect(url_for("dashboard"))

    @app.post("/session/refresh")
    def refresh_session():
        try:
            runtime.call(runtime.controller.refresh)
        except CommandRejectedError as e:
            flash(str(e), "warning")
        return redirect(url_for("dashboard"))

    @app.post("/session/reset")
    def reset_session():
        runtime.reset()
        return redirect(url_for("dashboard"))

    @app.get("/api/session")
    def api_session():
        return jsonify(runtime.view().as_dict())

    return app


# ----------------------------
# Main
# ----------------------------
def main():
    logging.basicConfig(level=logging.DEBUG)
    conf = app_runtime.load_conf()
    runtime = app_runtime.init_runtime(conf)
    app = create_app(runtime, conf)
    try:
        app.run(host=conf["web"]["host"], port=int(conf["web"]["port"]))
    finally:
        runtime.shutdown()


if __name__ == "__main__":
    main()
