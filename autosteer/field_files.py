import logging
import os

from autosteer.errors import ErrorType, GenerationError
from autosteer.geometry import positive_heading
from autosteer.models import HeadlandLine, HeadlandMode, ReferenceLine

logger = logging.getLogger(__name__)

"""
Field File Config
"""


headland_file_name = "Headlines.txt"
headland_header = "$HeadLines"

track_file_name = "TrackLines.txt"
track_header = "$TrackLines"

# track mode written for two point AB lines
ab_track_mode = 2

# paths with this many points or fewer are skipped when loading a headland file
min_loaded_headland_points = 3

# a_point_index written for clipped (open) headlands, closed rings are written with 0
open_headland_a_point_index = -1


def format_number(value, decimal_places):
    return f"{value:.{decimal_places}f}"


# reader that turns running off the end of the file into a malformed file error
class LineReader:
    def __init__(self, lines, file_name):
        self.lines = lines
        self.file_name = file_name
        self.index = 0

    def at_end(self):
        return self.index >= len(self.lines)

    def next(self, what):
        if self.at_end():
            raise GenerationError(
                ErrorType.BAD_INPUT_DATA,
                f"{self.file_name}: unexpected end of file reading {what}.",
            )
        line = self.lines[self.index]
        self.index += 1
        return line.strip()

    def parse(self, what, parser):
        line = self.next(what)
        try:
            return parser(line)
        except (ValueError, IndexError):
            raise GenerationError(
                ErrorType.BAD_INPUT_DATA,
                f"{self.file_name}: could not read {what} from '{line}' on line {self.index}.",
            )


def read_lines(path):
    with open(path) as f:
        return f.read().splitlines()


def parse_bool(text):
    if text.lower() == "true":
        return True
    if text.lower() == "false":
        return False
    raise ValueError(text)


def parse_point(text):
    words = text.split(",")
    return (float(words[0]), float(words[1]))


"""
Headland File
"""


def save_headland(field_directory, headland, name="Headland"):
    path = os.path.join(field_directory, headland_file_name)
    lines = [headland_header]
    if headland is not None and len(headland) > 0:
        lines.append(name)
        lines.append(str(headland.move_distance))
        lines.append(str(headland.mode.value))
        lines.append(
            str(0 if headland.is_closed else open_headland_a_point_index)
        )
        lines.append(str(len(headland)))
        for e, n, h in headland.points:
            lines.append(
                f"{format_number(e, 3)} , {format_number(n, 3)} , {format_number(h, 5)}"
            )

    with open(path, "w") as f:
        f.write("\n".join(lines) + "\n")
    logger.debug("Saved headland to %s", path)
    return path


def load_headlands(field_directory):
    path = os.path.join(field_directory, headland_file_name)
    if not os.path.isfile(path):
        return list()

    reader = LineReader(read_lines(path), headland_file_name)
    # header is optional
    if not reader.at_end() and reader.lines[0].strip().startswith("$"):
        reader.next("header")

    headlands = list()
    while not reader.at_end():
        name = reader.next("name")
        if len(name) == 0:
            continue
        move_distance = reader.parse("move distance", float)
        mode = reader.parse("mode", lambda text: HeadlandMode(int(text)))
        a_point_index = reader.parse("a point index", int)
        count = reader.parse("point count", int)

        points = list()
        for _ in range(count):
            words = reader.next("headland point").split(",")
            if len(words) < 3:
                continue
            try:
                points.append((float(words[0]), float(words[1]), float(words[2])))
            except ValueError:
                logger.warning("Skipping unreadable headland point %s", words)

        if len(points) <= min_loaded_headland_points:
            logger.warning("Skipping headland '%s' with %d points", name, len(points))
            continue

        headlands.append(
            HeadlandLine(
                tuple(points),
                is_closed=a_point_index >= 0,
                move_distance=move_distance,
                mode=mode,
            )
        )
    return headlands


def load_headland(field_directory):
    headlands = load_headlands(field_directory)
    return headlands[0] if len(headlands) > 0 else None


"""
Track File
"""


def save_tracks(field_directory, reference_lines):
    path = os.path.join(field_directory, track_file_name)
    lines = [track_header]
    for line in reference_lines:
        lines.append(line.name)
        lines.append(repr(positive_heading(line.heading)))
        lines.append(f"{format_number(line.point_a[0], 3)},{format_number(line.point_a[1], 3)}")
        lines.append(f"{format_number(line.point_b[0], 3)},{format_number(line.point_b[1], 3)}")
        # nudge
        lines.append("0")
        lines.append(str(ab_track_mode))
        lines.append("True")
        # AB lines carry no curve points
        lines.append("0")

    with open(path, "w") as f:
        f.write("\n".join(lines) + "\n")
    logger.debug("Saved %d tracks to %s", len(reference_lines), path)
    return path


def load_tracks(field_directory):
    path = os.path.join(field_directory, track_file_name)
    if not os.path.isfile(path):
        return list()

    reader = LineReader(read_lines(path), track_file_name)
    if reader.at_end() or not reader.next("header").startswith("$"):
        raise GenerationError(
            ErrorType.BAD_INPUT_DATA, f"{track_file_name} is missing its $ header."
        )

    tracks = list()
    while not reader.at_end():
        name = reader.next("name")
        if len(name) == 0:
            continue
        reader.parse("heading", float)
        point_a = reader.parse("point A", parse_point)
        point_b = reader.parse("point B", parse_point)
        nudge = reader.parse("nudge", float)
        reader.parse("mode", int)
        reader.parse("visibility", parse_bool)
        count = reader.parse("curve count", int)
        for _ in range(count):
            reader.parse("curve point", parse_point)

        line = ReferenceLine(point_a, point_b, name)
        if nudge != 0:
            line = line.offset(nudge)
        tracks.append(line)
    return tracks
