"""ClamAV Gateway is a REST interface for ClamAV daemon.

The ClamAV daemon (clamd) can be either reached via TCP socket or Unix
domain socket.  This behaviour can be specified via configuration.

Configuration: all configuration is managed through environment
variables.  All environment variables starting with "CLAMAV_" prefix
are loaded into the application.

No authentication of any type is implemented whatsoever: be sure that
your ClamAV gateway is adequately protected.

The following variables are accepted:

 - CLAMAV_CLAMD_HOST : application will connect to clamd running on TCP
    socket at host specified; also CLAMAV_CLAMD_PORT is expected
 - CLAMAV_CLAMD_PORT : use with CLAMAV_CLAMD_HOST
 - CLAMAV_CLAMD_SOCKET_PATH : application will connect to clamd
    running on Unix socket at path specified, when no host is set.
 - CLAMAV_CLAMD_TIMEOUT : seconds to wait for the connection to clamd
 - CLAMAV_INCLUDE_RAW_DATA : include clamd raw reply in scan responses
 - CLAMAV_ENABLE_PATH_SCAN : allow scanning paths on the clamd host

"""
import logging

from flask import Flask, jsonify, request
from flask_swagger import swagger
from werkzeug.exceptions import HTTPException

from .clamd import Clamd, ClamdTCPSocket, ClamdUnixSocket, \
    ClamdScanResult, ClamdScanStatus, ClamdException, \
    ClamdConnectionError, CommandError, MalformedResponseError

##
# Init app and config
##

app = Flask(__name__)

# load all env starting with CLAMAV_ and make them available in
# app.config without CLAMAV_
app.config.from_prefixed_env("CLAMAV")

# fix gunicorn logging
if __name__ != '__main__':
    gunicorn_logger = logging.getLogger('gunicorn.error')
    if gunicorn_logger.handlers:
        app.logger.handlers = gunicorn_logger.handlers[:]
        app.logger.setLevel(gunicorn_logger.level)
        app.logger.propagate = False

##
# API
##


@app.route("/api/v1/doc")
def api_doc():
    """OpenAPI spec of the v1 API.
    """
    swag = swagger(app)
    swag['info']['version'] = "1.0"
    swag['info']['title'] = "ClamAV gateway"
    swag['info']['description'] = \
        "File scanning with ClamAV daemon via REST API"
    return jsonify(swag)


@app.route("/health", methods=["GET"])
@app.route("/api/v1/clamav/ping", methods=["GET"])
def ping():
    """Ping clamav ensuring connection is up.
    ---
    tags:
      - status
    responses:
      200:
        description: Pong
        content: application/json
        schema:
          type: object
          properties:
            status:
              type: string
              description: Status of the ping
              example: OK
            message:
              type: string
              description: Message returned by clamav on ping command
              example: PONG
      503:
        description: clamd unreachable or not answering PONG
    """
    app.logger.debug("Pinging clamd...")
    try:
        pong = clamd_instance().ping()
    except ClamdException as e:
        app.logger.warning("Unable to ping clamd: %s", str(e))
        return {"status": "KO", "message": None, "error": str(e)}, 503

    if pong:
        return {"status": "OK", "message": "PONG"}, 200
    return {"status": "KO", "message": None}, 503


@app.route("/api/v1/clamav/version", methods=["GET"])
def clamav_version():
    """Get version of connected clamav instance.
    ---
    tags:
      - status
    responses:
      200:
        description: ClamAV version
        content: application/json
        schema:
          type: object
          properties:
            tag:
              type: string
              description: ClamAV program version
              example: ClamAV 1.4.2
            build_number:
              type: integer
              description: Version of the virus database
              example: 27500
            release_date:
              type: string
              description: Release date of the virus database (ISO 8601)
              example: "2024-12-30T08:43:37+00:00"
    """
    version = clamd_instance().version()
    app.logger.debug("Version clamd raw response: %s", version.raw_data)

    return {
        "tag": version.tag,
        "build_number": version.build_number,
        "release_date": version.release_date.isoformat(),
    }


@app.route("/api/v1/clamav/stats", methods=["GET"])
def stats():
    """Get clamav stats.
    ---
    tags:
      - status
    responses:
      200:
        description: ClamAV stats
        content: application/json
        schema:
          type: object
          properties:
            pools:
              type: integer
            state:
              type: string
              example: VALID PRIMARY
            threads_live:
              type: integer
            threads_idle:
              type: integer
            threads_max:
              type: integer
            threads_idle_timeout_secs:
              type: integer
            queue:
              type: integer
            mem_heap:
              type: string
              example: 9.082M
            mem_mmap:
              type: string
            mem_used:
              type: string
            mem_free:
              type: string
            mem_releasable:
              type: string
            pools_used:
              type: string
            pools_total:
              type: string
    """
    app.logger.debug("Requesting clamd stats...")
    daemon_stats = clamd_instance().stats()
    app.logger.debug("Stats clamd raw response: %s", daemon_stats.raw_data)

    return {
        "pools": daemon_stats.pools,
        "state": daemon_stats.state,
        "threads_live": daemon_stats.threads_live,
        "threads_idle": daemon_stats.threads_idle,
        "threads_max": daemon_stats.threads_max,
        "threads_idle_timeout_secs": daemon_stats.threads_idle_timeout_secs,
        "queue": daemon_stats.queue,
        "mem_heap": daemon_stats.mem_heap,
        "mem_mmap": daemon_stats.mem_mmap,
        "mem_used": daemon_stats.mem_used,
        "mem_free": daemon_stats.mem_free,
        "mem_releasable": daemon_stats.mem_releasable,
        "pools_used": daemon_stats.pools_used,
        "pools_total": daemon_stats.pools_total,
    }


@app.route("/api/v1/clamav/reload", methods=["POST"])
def reload():
    """Reload clamav virus databases.
    ---
    tags:
      - admin
    responses:
      200:
        description: clamd reply to RELOAD
        content: application/json
        schema:
          type: object
          properties:
            message:
              type: string
              example: RELOADING
            details:
              type: array
              description: Additional lines of details, if any
    """
    resp = clamd_instance().reload()
    app.logger.info("Requested clamd reload: %s", resp.message)

    return {
        "message": resp.message,
        "details": resp.details,
    }


@app.route("/api/v1/clamav/scan", methods=["POST"])
def scan_file():
    """Scan a file attached to the request.
    ---
    tags:
      - scan
    parameters:
      - in: formData
        name: file
        description: File to scan
        required: true
    responses:
      200:
        description: Scanning result
        content: application/json
        schema:
          type: object
          properties:
            status:
              type: string
              description: Status of the scanning {OK,FOUND,ERROR}
              example: FOUND
            input_file:
              type: string
              description: Input file that was scanned
              example: myfile.txt
            virus:
              type: string
              description: Virus found, if any
              example: Name-Of-Virus-Found
            error:
              type: string
              description: Error occurred, if any
            file_size:
              type: integer
              description: Size of the file scanned in bytes
              example: 256
    """
    if 'file' not in request.files:
        return {"error": "No file attached"}, 400
    file_to_analyze = request.files['file']
    filename = file_to_analyze.filename or "stream"
    safe_filename = sanitize(filename)

    app.logger.debug("Starting scan for file \"%s\"", safe_filename)
    # we send an open stream to the clamd instance
    result = clamd_instance().instream(file_to_analyze.stream)

    # the file pointer is at the end of the stream, so tell() will
    # give us the size in bytes
    file_size = file_to_analyze.stream.tell()
    app.logger.info("Scanned file \"%s\" (%d bytes) with status %s - %s",
                    safe_filename, file_size, result.status.value,
                    result.signature or "no virus")
    app.logger.debug("Scan raw response: %s", result.raw_data)

    # the location is always "stream" as returned by clamd INSTREAM
    # command, use what the client told us about the file
    resp_body = scan_result_body(result)
    resp_body["input_file"] = filename
    resp_body["file_size"] = file_size

    if result.status == ClamdScanStatus.ERROR:
        app.logger.error("Detected clamd error: %s", result.err_msg)
        return resp_body, 500
    return resp_body, 200


@app.route("/api/v1/clamav/scan-path", methods=["POST"])
def scan_path():
    """Scan a file or directory on the clamd host.
    ---
    tags:
      - scan
    parameters:
      - in: body
        name: body
        required: true
        schema:
          type: object
          properties:
            path:
              type: string
              description: Absolute path, as seen by clamd
              example: /srv/uploads
            continue_on_virus:
              type: boolean
              description: Go on scanning after the first virus found
    responses:
      200:
        description: One scanning result per file reported by clamd
        content: application/json
        schema:
          type: object
          properties:
            path:
              type: string
            results:
              type: array
      403:
        description: Path scanning disabled
    """
    if not config_bool("ENABLE_PATH_SCAN"):
        return {"error": "Path scanning is disabled"}, 403

    body = request.get_json(silent=True) or {}
    path = body.get("path")
    if not isinstance(path, str) or not path:
        return {"error": "Missing path"}, 400
    continue_on_virus = body.get("continue_on_virus", False)
    if not isinstance(continue_on_virus, bool):
        return {"error": "continue_on_virus must be a boolean"}, 400

    app.logger.debug("Starting scan for path \"%s\"", sanitize(path))
    results = clamd_instance().scan_path(path,
                                         continue_on_virus=continue_on_virus)
    infected = [r for r in results if r.status == ClamdScanStatus.FOUND]
    app.logger.info("Scanned path \"%s\": %d results, %d infected",
                    sanitize(path), len(results), len(infected))

    return {
        "path": path,
        "results": [scan_result_body(r) for r in results],
    }


##
# Error handlers
##


@app.errorhandler(HTTPException)
def handle_http_exception(e):
    """Handle an HTTP exception and return JSON.
    """
    str_e = str(e)
    if e.code not in [404, 405, 415]:
        # don't pollute logs, these statuses does not concern us
        app.logger.exception("HTTP exception: %s", str_e)
    return {"error": str_e}, e.code


@app.errorhandler(ClamdException)
def handle_clamd_exception(e):
    """Handle an error talking to clamd and return JSON.
    """
    str_e = str(e)
    kind = type(e).__name__
    if isinstance(e, MalformedResponseError):
        app.logger.error("Unable to parse clamd response (%s). "
                         "Raw response: %s", str_e, e.raw_data)
        code = 502
    elif isinstance(e, (ClamdConnectionError, CommandError)):
        app.logger.error("Unable to talk to clamd: %s", str_e)
        code = 502
    else:
        app.logger.exception("clamd exception: %s", str_e)
        code = 500
    return {"error": str_e, "kind": kind}, code


@app.errorhandler(Exception)
def handle_exception(e):
    """Handle an generic exception and return JSON.
    """
    str_e = str(e)
    app.logger.exception("Generic exception: %s", str_e)
    return {"error": str_e}, 500


##
# Helpers
##


def clamd_instance() -> Clamd:
    """Get a clamd instance based on app config.
    """
    # remember, these are env variables prefixed with CLAMAV_
    host = app.config.get("CLAMD_HOST")
    port = app.config.get("CLAMD_PORT")
    timeout = app.config.get("CLAMD_TIMEOUT")
    if timeout is not None:
        timeout = float(timeout)

    if host is not None and port is not None:
        return ClamdTCPSocket(host=host, port=int(port), timeout=timeout)

    socket_path = app.config.get("CLAMD_SOCKET_PATH") or "/tmp/clamd.sock"
    return ClamdUnixSocket(socket_path, timeout=timeout)


def scan_result_body(result: ClamdScanResult) -> dict:
    """Pack a scanning result as response body.
    """
    body = {
        "status": result.status.value,
        "input_file": result.location,
        "virus": result.signature,
        "error": result.err_msg,
    }
    if config_bool("INCLUDE_RAW_DATA"):
        app.logger.warning("Including raw data in scan response. "
                           "Use this option only for debugging")
        body["raw_data"] = result.raw_data
    return body


def sanitize(value: str) -> str:
    """Strip line breaks to prevent log injection.
    """
    return value.replace('\r', '').replace('\n', '')


def config_bool(env_name: str) -> bool:
    """Given a config var name, try to parse as boolean.
    """
    val = app.config.get(env_name, False)
    if isinstance(val, bool):
        return val
    return str(val).strip().lower() in ["true", "1", "enable", "enabled"]


##
# DEV runner
##

if __name__ == "__main__":
    # don't run directly in prod, use a production grade wsgi server
    # like gunicorn
    app.run(host="0.0.0.0", port=8080, debug=True)
