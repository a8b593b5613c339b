import json
import logging
import tempfile
import traceback

import boto3

from autosteer.errors import AlgorithmError, ErrorType, GenerationError, make_error_list_return
from autosteer.field_files import save_headland
from autosteer.headlands import build_headland, clip_at_line, headland_distance, nearest_anchor
from autosteer.models import BoundaryRing, HeadlandMode
from autosteer.projection import LocalPlane, make_feature_collection

logger = logging.getLogger()
logger.setLevel(logging.INFO)
s3 = boto3.resource("s3")

results_bucket = "headland-build-results"


def parse_mode(value):
    if value is None:
        return HeadlandMode.CURVE
    try:
        if isinstance(value, str):
            return HeadlandMode[value.upper()]
        return HeadlandMode(value)
    except (KeyError, ValueError):
        raise GenerationError(
            ErrorType.BAD_INPUT_DATA,
            f"Headland mode must be one of {[m.name for m in HeadlandMode]}, got {value}.",
        )


def headland_file_text(headland):
    with tempfile.TemporaryDirectory() as directory:
        path = save_headland(directory, headland)
        with open(path) as f:
            return f.read()


# build (and optionally clip) a headland from the payload, in the field's local plane
def build_from_payload(payload):
    settings = payload.get("settings")
    if settings is None:
        raise GenerationError(ErrorType.BAD_INPUT_DATA, "Missing 'settings' in payload")
    boundary_geojson = payload.get("boundary")
    if boundary_geojson is None:
        raise GenerationError(ErrorType.BAD_INPUT_DATA, "Missing 'boundary' in payload")

    plane = LocalPlane.from_geojson(boundary_geojson)
    boundary = BoundaryRing(tuple(plane.ring_from_geojson(boundary_geojson)))

    mode = parse_mode(settings.get("mode"))
    distance = settings.get("headlandDistance")
    if distance is None:
        tool_width = settings.get("toolWidth")
        if tool_width is None:
            raise GenerationError(
                ErrorType.BAD_INPUT_DATA,
                "Settings need either 'headlandDistance' or 'toolWidth'",
            )
        distance = headland_distance(tool_width, settings.get("passes", 1))

    headland, errors = build_headland(boundary, distance, mode)
    # parts of the field cut off by the offset are reported back as lat/long polygons
    for error in errors:
        if error.geometry is not None:
            error.geometry = make_feature_collection(
                [plane.to_geojson_polygon(ring) for ring in error.geometry]
            )

    clip_points = payload.get("clipPoints")
    if clip_points is not None:
        if len(clip_points) != 2:
            raise GenerationError(
                ErrorType.BAD_INPUT_DATA, "'clipPoints' must hold exactly 2 points"
            )
        anchors = [
            nearest_anchor(headland, plane.to_local(point[0], point[1]))
            for point in clip_points
        ]
        headland = clip_at_line(headland, anchors[0], anchors[1], mode)

    coords = headland.coords
    if headland.is_closed:
        geometry = plane.to_geojson_polygon(coords)
    else:
        geometry = plane.to_geojson_line(coords)

    result = {
        "headland": geometry,
        "moveDistance": headland.move_distance,
        "mode": headland.mode.name,
        "isClosed": headland.is_closed,
        "headlinesFile": headland_file_text(headland),
    }
    return result, errors


def lambda_handler(event, _):
    logging.info("Starting headland build")
    executionArn = event.get("executionArn")
    body = event.get("body")
    try:
        logging.info("body:")
        logging.info(body)
        if body is None:
            raise GenerationError(ErrorType.BAD_INPUT_DATA, "Missing 'body' in payload")
        try:
            if isinstance(body, str):
                body = json.loads(body)
        except json.JSONDecodeError:
            return {
                "statusCode": 400,
                "executionArn": executionArn,
                "body": json.dumps({"message": "Invalid JSON format"}),
            }
        # body is just {'path': string}, the payload itself lives in S3
        obj = s3.Object(results_bucket, body.get("path"))
        objContent = obj.get()["Body"].read()
        payload = json.loads(objContent)

        result, errors = build_from_payload(payload)
        logging.info("Finished headland build")
        logging.info(errors)

        resultBody = json.dumps(
            {
                "result": {
                    "success": True,
                    "payload": result,
                    "error": make_error_list_return(errors),
                },
                "input": {"metadata": payload.get("metadata")},
            }
        )
        s3.Bucket(results_bucket).put_object(
            Key=executionArn, Body=resultBody, ContentType="application/json"
        )
        return {"success": True, "executionArn": executionArn}
    except (GenerationError, AlgorithmError) as e:
        logger.error("Error: %s", traceback.format_exc())
        resultBody = json.dumps(
            {
                "result": {
                    "success": False,
                    "error": make_error_list_return(e),
                },
                "input": body,
            }
        )
        s3.Bucket(results_bucket).put_object(
            Key=executionArn, Body=resultBody, ContentType="application/json"
        )
        return {"success": False, "executionArn": executionArn}


if __name__ == "__main__":
    # local run against a payload file: python3 lambda_function.py payload.json
    import sys

    with open(sys.argv[1]) as f:
        local_payload = json.load(f)
    local_result, local_errors = build_from_payload(local_payload)
    print(json.dumps({"result": local_result, "error": make_error_list_return(local_errors)}, indent=2))
