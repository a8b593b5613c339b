#!/usr/bin/env python3
import argparse
import json
import multiprocessing
import os
from math import cos, radians, sin, tan
from time import time

import matplotlib
import matplotlib.pyplot as plt
from shapely import Point, Polygon

from autosteer.errors import GenerationError
from autosteer.geometry import path_length
from autosteer.models import HeadlandMode, Pose, ReferenceLine, TurnPhase, VehicleConfig
from autosteer.projection import LocalPlane
from autosteer.session import FieldSession
from autosteer.turn_creation import DubinsTurnCreationService, TurnCreationResult
from autosteer.youturn import YouTurnConfig

BOUNDARY = "Boundary"
HEADLAND = "Headland"
DRIVEN_TRACK = "Driven Track"
TURN_PATHS = "Turn Paths"
REFERENCE_LINE = "Reference Line"


# turn service that always declines, so every turn uses the direct fallback construction
class FallbackOnlyService:
    def create_turn(self, request):
        return TurnCreationResult(False, failure_reason="fallback only")


def getTurnService(name):
    if name == "dubins":
        return DubinsTurnCreationService()
    if name == "fallback":
        return FallbackOnlyService()
    raise ValueError(f"Unknown turn service '{name}'")


# given a list of (x, y) tuples, return a list of all xs and a list of all ys
def getXYLists(coords):
    return list(zip(*coords))[0], list(zip(*coords))[1]


# kinematic bicycle model, steer angle in degrees with positive to the right
def advancePose(pose, steer_angle, wheelbase, dt):
    distance = pose.speed * dt
    heading = pose.heading + distance * tan(radians(steer_angle)) / wheelbase
    return Pose(
        pose.easting + sin(heading) * distance,
        pose.northing + cos(heading) * distance,
        heading,
        pose.speed,
    )


class TestClass:
    def onPick(self, event):
        legend_line = event.artist

        # if the source of the event is not a legend line, do nothing
        if legend_line not in self.map_legend_to_ax:
            return

        # on first click lower alpha, on second click make invisible
        for plot in self.map_legend_to_ax[legend_line]:
            if plot.get_visible() and plot.get_alpha() == 1.0:
                plot.set_alpha(0.6)
                legend_line.set_alpha(0.6)
            elif plot.get_visible() and plot.get_alpha() == 0.6:
                plot.set_visible(False)
                legend_line.set_alpha(0.1)
            elif not plot.get_visible():
                plot.set_visible(True)
                plot.set_alpha(1.0)
                legend_line.set_alpha(1.0)

        self.fig.canvas.draw()

    def addPlot(self, label, plot):
        self.plots.setdefault(label, list()).extend(plot)

    def endTest(self, output, success, msg=None):
        if success:
            result = "PASSED"
            title_colour = "green"
        else:
            result = f"FAILED - {msg}"
            title_colour = "red"
        output = output + f"| {result}\n"
        output = output + f"| test run in {time() - self.test_start:.2f} seconds"

        print(output)

        if hasattr(self, "ax") and self.args.show_plots:
            self.ax.set_title(f"{self.ax.get_title()}\n\n{result}", color=title_colour)

            # generate legend in correct order
            handles, labels = self.ax.get_legend_handles_labels()
            handles_ordered = list()
            labels_ordered = list()
            for label in [BOUNDARY, HEADLAND, REFERENCE_LINE, TURN_PATHS, DRIVEN_TRACK]:
                if label in labels:
                    handles_ordered.append(handles[labels.index(label)])
                    labels_ordered.append(label)
            leg = self.ax.legend(
                handles_ordered,
                labels_ordered,
                fancybox=True,
                shadow=True,
                loc="lower center",
                bbox_to_anchor=(0.5, -0.175),
                ncol=3,
            )

            # configure legend to be interactive
            self.map_legend_to_ax = dict()
            for legend_line in leg.get_lines():
                legend_line.set_picker(5)
                self.map_legend_to_ax[legend_line] = self.plots[legend_line.get_label()]
            self.fig.canvas.mpl_connect("pick_event", self.onPick)
            leg.set_draggable(True)

            if not (self.args.show_failed and success):
                plt.show()

    def doTest(self, test_idx, passed_tests, all_tests):
        test = self.test_json["testCases"][test_idx]
        name = test["name"]
        if self.args.test_case is not None and name != self.args.test_case:
            return
        all_tests.append(name)

        self.test_start = time()
        output = "--------------------\n"
        output = output + f'| Test Case {test_idx}: {test["description"]}\n'

        settings = test["settings"]
        expected = test["expected"]

        # everything runs in a flat plane centred on the first boundary vertex
        plane = LocalPlane.from_geojson(test["boundary"])
        boundary_coords = plane.ring_from_geojson(test["boundary"])
        reference = ReferenceLine(
            plane.to_local(*test["referenceLine"][0]),
            plane.to_local(*test["referenceLine"][1]),
        )

        if self.args.show_plots:
            matplotlib.use("TkAgg")
            self.fig, self.ax = plt.subplots(figsize=(10, 10))
            self.ax.set_title(f'Test {test["description"]}')
            self.ax.set_xlabel("Easting (m)")
            self.ax.set_ylabel("Northing (m)")
            self.ax.set_aspect("equal")
            self.plots = dict()
            self.addPlot(
                BOUNDARY,
                self.ax.plot(
                    *getXYLists(boundary_coords + boundary_coords[:1]),
                    color="black",
                    label=BOUNDARY,
                ),
            )
            self.addPlot(
                REFERENCE_LINE,
                self.ax.plot(
                    *getXYLists([reference.point_a, reference.point_b]),
                    color="grey",
                    linestyle="--",
                    label=REFERENCE_LINE,
                ),
            )

        vehicle = VehicleConfig.from_settings(settings)
        session = FieldSession(
            vehicle,
            YouTurnConfig.from_settings(settings),
            turn_service=getTurnService(settings.get("turnService", "fallback")),
        )
        try:
            session.set_boundary(boundary_coords)
            headland_settings = test["headland"]
            headland = session.build_headland(
                headland_settings["distance"],
                HeadlandMode[headland_settings.get("mode", "CURVE")],
            )
            if headland is None:
                self.endTest(output, success=False, msg=session.status)
                return

            clip_points = headland_settings.get("clipPoints")
            if clip_points is not None:
                for point in clip_points:
                    session.select_headland_point(plane.to_local(*point))
                headland = session.clip_headland()
                if headland is None:
                    self.endTest(output, success=False, msg=session.status)
                    return

            if "perimeterM" in expected:
                perimeter = path_length(headland.coords, closed=headland.is_closed)
                if abs(perimeter - expected["perimeterM"]) > self.perimeter_tolerance_m:
                    self.endTest(
                        output,
                        success=False,
                        msg=f'headland length {perimeter:.1f}m, expected {expected["perimeterM"]}m',
                    )
                    return

            if self.args.show_plots:
                coords = headland.coords
                if headland.is_closed:
                    coords = coords + coords[:1]
                self.addPlot(
                    HEADLAND,
                    self.ax.plot(*getXYLists(coords), color="green", label=HEADLAND),
                )

            session.set_reference_line(reference)
            start = test["start"]
            pose = Pose(
                *plane.to_local(*start["position"]),
                radians(start["headingDeg"]),
                start["speedMs"],
            )

            field = Polygon(boundary_coords).buffer(self.boundary_tolerance_m)
            track = [pose.position]
            turns = 0
            turn_paths = list()
            paths_away = 0
            left_field = False
            for _ in range(self.max_ticks):
                tick = session.on_pose(pose)
                if tick.phase is TurnPhase.APPROACHING and (
                    len(turn_paths) == 0 or turn_paths[-1] != tick.turn_path
                ):
                    turn_paths.append(tick.turn_path)
                if tick.paths_away != paths_away:
                    turns += 1
                    paths_away = tick.paths_away
                pose = advancePose(pose, tick.steer_angle, vehicle.wheelbase, self.tick_seconds)
                track.append(pose.position)
                if not field.contains(Point(pose.position)):
                    left_field = True
                    break
                if session.status == "End of field reached":
                    break
        except GenerationError as e:
            self.endTest(output, success=False, msg=e.error.message)
            return
        finally:
            session.close()

        if self.args.show_plots:
            for path in turn_paths:
                self.addPlot(
                    TURN_PATHS,
                    self.ax.plot(*getXYLists(path), color="orange", label=TURN_PATHS),
                )
            self.addPlot(
                DRIVEN_TRACK,
                self.ax.plot(*getXYLists(track), color="blue", label=DRIVEN_TRACK),
            )

        output = output + f"| {turns} turns, finished on path {paths_away}\n"
        if left_field:
            self.endTest(output, success=False, msg="vehicle left the field")
            return
        if turns < expected.get("minTurns", 0):
            self.endTest(
                output,
                success=False,
                msg=f'only {turns} turns completed, expected at least {expected["minTurns"]}',
            )
            return
        if "endOfField" in expected and expected["endOfField"] != (
            session.status == "End of field reached"
        ):
            self.endTest(output, success=False, msg=f"finished with status '{session.status}'")
            return

        passed_tests.append(name)
        self.endTest(output, success=True)

    def test(self):
        parser = argparse.ArgumentParser(description="Run all field scenarios")
        parser.add_argument(
            "--test-file",
            type=str,
            help="Name of test file (excluding extension), 'tests' by default.",
        )
        parser.add_argument(
            "--test-case",
            type=str,
            help="Specify single test case to run by name.",
        )
        parser.add_argument(
            "--sequential",
            action="store_true",
            help="Run tests in sequence instead of in parallel.",
        )
        parser.add_argument(
            "--show-plots",
            action="store_true",
            help="Display test case data in plot.",
        )
        parser.add_argument(
            "--show-failed",
            action="store_true",
            help="Display plots for failed cases only.",
        )
        self.args = parser.parse_args()

        # toggle show_plots also if we are showing only failed plots
        if self.args.show_failed:
            self.args.show_plots = True

        self.test_folder = "ci/test_cases"

        all_tests_start = time()

        if self.args.test_file:
            test_file = self.args.test_file
        else:
            test_file = "tests"

        with open(os.path.join(self.test_folder, f"{test_file}.json")) as f:
            self.test_json = json.load(f)

        # get common test parameters
        parameters = self.test_json["testParameters"]
        self.tick_seconds = parameters["tickSeconds"]
        self.max_ticks = parameters["maxTicks"]
        self.boundary_tolerance_m = parameters["boundaryToleranceM"]
        self.perimeter_tolerance_m = parameters["perimeterToleranceM"]

        test_range = range(len(self.test_json["testCases"]))

        if self.args.sequential or self.args.show_plots:
            self.passed_tests = list()
            self.all_tests = list()
            for test_idx in test_range:
                self.doTest(test_idx, self.passed_tests, self.all_tests)
        else:
            manager = multiprocessing.Manager()
            self.passed_tests = manager.list()
            self.all_tests = manager.list()
            processes = list()
            for test_idx in test_range:
                processes.append(
                    multiprocessing.Process(
                        target=self.doTest,
                        args=(test_idx, self.passed_tests, self.all_tests),
                    )
                )
            for process in processes:
                process.start()
            for process in processes:
                process.join()

        print("--------------------")
        if len(self.all_tests) == 0:
            print(f"Test Case '{self.args.test_case}' not found")
        elif len(self.passed_tests) == len(self.all_tests):
            print("ALL PASSED")
        else:
            failed_str = "FAILED CASES:"
            for test in self.all_tests:
                if test not in self.passed_tests:
                    failed_str = failed_str + f" {test},"
            print(failed_str[:-1])
        print(f"all tests run in {time() - all_tests_start:.2f} seconds")


if __name__ == "__main__":
    test_class = TestClass()
    test_class.test()
