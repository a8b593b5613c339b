import io
import json

import pytest

import lambda_function
from autosteer.errors import ErrorType, GenerationError
from autosteer.models import HeadlandMode

BOUNDARY = {
    "type": "Polygon",
    "coordinates": [
        [
            [151.9, -27.5],
            [151.9024305, -27.5],
            [151.9024305, -27.4979255],
            [151.9, -27.4979255],
            [151.9, -27.5],
        ]
    ],
}


class FakeS3:
    def __init__(self, objects):
        self.objects = objects
        self.written = dict()

    def Object(self, bucket, key):
        fake = self

        class _Object:
            def get(self):
                return {"Body": io.BytesIO(fake.objects[key])}

        return _Object()

    def Bucket(self, bucket):
        fake = self

        class _Bucket:
            def put_object(self, Key, Body, ContentType):
                fake.written[Key] = json.loads(Body)

        return _Bucket()


def payload(**settings):
    return {"settings": settings, "boundary": BOUNDARY, "metadata": {"field": "Home"}}


class TestParseMode:
    def test_names_and_values(self):
        assert lambda_function.parse_mode(None) is HeadlandMode.CURVE
        assert lambda_function.parse_mode("line") is HeadlandMode.LINE
        assert lambda_function.parse_mode(HeadlandMode.LINE.value) is HeadlandMode.LINE

    def test_unknown_mode(self):
        with pytest.raises(GenerationError) as e:
            lambda_function.parse_mode("zigzag")
        assert e.value.error.error_type is ErrorType.BAD_INPUT_DATA


class TestBuildFromPayload:
    def test_closed_headland(self):
        result, errors = lambda_function.build_from_payload(payload(headlandDistance=20.0))
        assert errors == []
        assert result["isClosed"]
        assert result["mode"] == "CURVE"
        assert result["moveDistance"] == 20.0
        assert result["headland"]["type"] == "Polygon"
        assert result["headlinesFile"].startswith("$HeadLines\nHeadland\n20.0\n")

    def test_distance_from_tool_width(self):
        result, _ = lambda_function.build_from_payload(payload(toolWidth=6.0, passes=2, mode="LINE"))
        assert result["moveDistance"] == 12.0
        assert result["mode"] == "LINE"

    def test_clipped_headland_is_a_line(self):
        request = payload(headlandDistance=20.0, mode="LINE")
        # one point near the middle of the west and south headland edges
        request["clipPoints"] = [[151.9002, -27.4989], [151.9012, -27.4998]]
        result, _ = lambda_function.build_from_payload(request)
        assert not result["isClosed"]
        assert result["headland"]["type"] == "LineString"

    def test_missing_width(self):
        with pytest.raises(GenerationError) as e:
            lambda_function.build_from_payload(payload())
        assert e.value.error.error_type is ErrorType.BAD_INPUT_DATA

    def test_missing_boundary(self):
        with pytest.raises(GenerationError):
            lambda_function.build_from_payload({"settings": {"headlandDistance": 20.0}})

    def test_wrong_clip_point_count(self):
        request = payload(headlandDistance=20.0)
        request["clipPoints"] = [[151.9002, -27.4989]]
        with pytest.raises(GenerationError):
            lambda_function.build_from_payload(request)


class TestHandler:
    def test_result_written_to_bucket(self, monkeypatch):
        fake = FakeS3({"requests/1.json": json.dumps(payload(headlandDistance=20.0)).encode()})
        monkeypatch.setattr(lambda_function, "s3", fake)

        response = lambda_function.lambda_handler(
            {"executionArn": "run-1", "body": json.dumps({"path": "requests/1.json"})}, None
        )
        assert response == {"success": True, "executionArn": "run-1"}
        written = fake.written["run-1"]
        assert written["result"]["success"]
        assert written["result"]["error"] == {"errors": []}
        assert written["input"]["metadata"] == {"field": "Home"}

    def test_failure_written_to_bucket(self, monkeypatch):
        fake = FakeS3({"requests/2.json": json.dumps(payload()).encode()})
        monkeypatch.setattr(lambda_function, "s3", fake)

        response = lambda_function.lambda_handler(
            {"executionArn": "run-2", "body": {"path": "requests/2.json"}}, None
        )
        assert not response["success"]
        errors = fake.written["run-2"]["result"]["error"]["errors"]
        assert errors[0]["errorType"] == "BAD_INPUT_DATA"

    def test_invalid_json(self):
        response = lambda_function.lambda_handler({"executionArn": "run-3", "body": "{not json"}, None)
        assert response["statusCode"] == 400
