import math

import pytest

from robocal.led_finder import (
    CloudDifferenceTracker,
    LedFinder,
    TransformError,
    distance_points,
)
from robocal.messages import CalibrationData, Point, PointCloud, PointStamped

NAN = float("nan")
POINTS = [(0.0, 0.0, 1.0), (0.05, 0.0, 1.0), (0.0, 0.05, 1.0), (0.05, 0.05, 1.0)]


def make_cloud(colors, points=POINTS, frame_id="camera_frame"):
    return PointCloud(points=list(points), colors=list(colors), height=2, width=2,
                      frame_id=frame_id)


def dark():
    return make_cloud([(10, 10, 10)] * 4)


def lit():
    return make_cloud([(200, 200, 200)] + [(10, 10, 10)] * 3)


def identity_transform(point, target_frame):
    return PointStamped(Point(point.point.x, point.point.y, point.point.z), target_frame,
                        point.stamp)


def make_finder(transform=identity_transform, **kwargs):
    state = {"code": 0, "calls": []}

    def set_led(code):
        state["code"] = code
        state["calls"].append(code)

    def cloud_source():
        return lit() if state["code"] != 0 else dark()

    finder = LedFinder(
        "led",
        [{"code": 5, "x": 0.0, "y": 0.0, "z": 1.0, "topic": "led_image"}],
        set_led,
        cloud_source,
        transform,
        gripper_led_frame="gripper",
        **kwargs,
    )
    return finder, state


def test_distance_points_pythagorean():
    assert distance_points(Point(0, 0, 0), Point(3, 4, 0)) == pytest.approx(5.0)


def test_distance_points_symmetric_and_zero():
    a, b = Point(1.0, -2.0, 0.5), Point(-0.5, 3.0, 2.0)
    assert distance_points(a, b) == pytest.approx(distance_points(b, a))
    assert distance_points(a, a) == 0.0


def test_reset_clears_image():
    tracker = CloudDifferenceTracker("gripper", Point(0, 0, 1))
    tracker.reset(2, 3)
    image = tracker.get_image()
    assert (image.height, image.width, image.step) == (2, 3, 9)
    assert image.data == bytes(18)
    assert tracker.max_index == -1


def test_process_rejects_changed_size():
    tracker = CloudDifferenceTracker("gripper", Point(0, 0, 1))
    tracker.reset(3, 3)
    assert tracker.process(lit(), dark(), Point(0, 0, 1), 0.1, 1.0) is False


def test_process_tracks_brightening_pixel():
    tracker = CloudDifferenceTracker("gripper", Point(0, 0, 1))
    tracker.reset(2, 2)
    assert tracker.process(lit(), dark(), Point(0, 0, 1), 0.1, 1.0) is True
    assert tracker.max_index == 0
    assert tracker.diff[1:] == [0.0, 0.0, 0.0]
    assert tracker.diff[0] > 0
    assert tracker.is_found(lit(), tracker.diff[0] - 1.0)
    assert not tracker.is_found(lit(), tracker.diff[0] + 1.0)


def test_process_negative_weight_counts_darkening():
    tracker = CloudDifferenceTracker("gripper", Point(0, 0, 1))
    tracker.reset(2, 2)
    tracker.process(dark(), lit(), Point(0, 0, 1), 0.1, -1.0)
    assert tracker.max_index == 0
    assert tracker.diff[0] > 0
    # Brightening with negative weight does nothing
    other = CloudDifferenceTracker("gripper", Point(0, 0, 1))
    other.reset(2, 2)
    other.process(lit(), dark(), Point(0, 0, 1), 0.1, -1.0)
    assert other.diff == [0.0] * 4


def test_process_ignores_points_far_from_led():
    tracker = CloudDifferenceTracker("gripper", Point(0, 0, 1))
    tracker.reset(2, 2)
    tracker.process(lit(), dark(), Point(10.0, 0, 1), 0.1, 1.0)
    assert tracker.diff == [0.0] * 4
    assert tracker.max_index == -1
    assert not tracker.is_found(lit(), 0.0)


def test_process_requires_colours():
    tracker = CloudDifferenceTracker("gripper", Point(0, 0, 1))
    tracker.reset(2, 2)
    bare = PointCloud(points=list(POINTS), height=2, width=2)
    with pytest.raises(ValueError):
        tracker.process(bare, bare, Point(0, 0, 1), 0.1, 1.0)


def test_is_found_rejects_nan_point():
    tracker = CloudDifferenceTracker("gripper", Point(0, 0, 1))
    tracker.reset(2, 2)
    tracker.process(lit(), dark(), Point(0, 0, 1), 0.1, 1.0)
    nan_points = [(NAN, NAN, NAN)] + POINTS[1:]
    assert not tracker.is_found(make_cloud([(0, 0, 0)] * 4, nan_points), 0.0)
    assert tracker.get_refined_centroid(make_cloud([(0, 0, 0)] * 4, nan_points)) is None


def test_refined_centroid_averages_nearby_points():
    points = [(0.0, 0.0, 1.0), (0.01, 0.0, 1.0), (1.0, 1.0, 1.0), (0.0, 0.0, 2.0)]
    prev = make_cloud([(0, 0, 0)] * 4, points)
    cloud = make_cloud([(100, 100, 100), (99, 99, 99), (100, 100, 100), (0, 0, 0)], points)
    tracker = CloudDifferenceTracker("gripper", Point(0, 0, 1))
    tracker.reset(2, 2)
    tracker.process(cloud, prev, Point(0, 0, 1), 5.0, 1.0)
    centroid = tracker.get_refined_centroid(cloud)
    assert centroid.frame_id == "camera_frame"
    assert 0.0 < centroid.point.x < 0.01
    assert centroid.point.y == pytest.approx(0.0)
    assert centroid.point.z == pytest.approx(1.0)


def test_image_marks_strongest_pixel():
    tracker = CloudDifferenceTracker("gripper", Point(0, 0, 1))
    tracker.reset(2, 2)
    tracker.process(lit(), dark(), Point(0, 0, 1), 0.1, 1.0)
    image = tracker.get_image()
    assert image.encoding == "bgr8"
    assert image.pixel(0) == (255, 0, 0)
    assert all(image.pixel(i) == (0, 0, 0) for i in range(1, 4))


def test_find_locates_led():
    published = []
    images = []
    finder, state = make_finder(publish=published.append,
                                publish_image=lambda t, im: images.append(t),
                                camera_info=lambda: "info")
    msg = CalibrationData()
    assert finder.find(msg) is True
    assert state["calls"] == [0, 5, 0, 5, 0]
    camera, chain = msg.observations
    assert camera.sensor_name == "camera"
    assert chain.sensor_name == "arm"
    assert len(camera.features) == 1
    feature = camera.features[0]
    assert (feature.point.x, feature.point.y, feature.point.z) == pytest.approx((0.0, 0.0, 1.0))
    assert feature.frame_id == "camera_frame"
    assert camera.ext_camera_info == "info"
    assert chain.features[0].frame_id == "gripper"
    assert chain.features[0].point == Point(0.0, 0.0, 1.0)
    assert camera.cloud is None
    assert len(published) == 1 and len(published[0]) == 1
    assert images and set(images) == {"led_image"}


def test_find_debug_keeps_cloud():
    finder, _ = make_finder(debug=True)
    msg = CalibrationData()
    assert finder.find(msg)
    assert len(msg.observations[0].cloud) == 4


def test_find_fails_without_cloud():
    finder = LedFinder("led", [{"code": 1, "x": 0, "y": 0, "z": 1}],
                       lambda code: None, lambda: None, identity_transform)
    msg = CalibrationData()
    assert finder.find(msg) is False
    assert msg.observations == []


def test_find_fails_on_transform_error():
    def broken(point, target_frame):
        raise TransformError("no transform")

    finder, _ = make_finder(transform=broken)
    msg = CalibrationData()
    assert finder.find(msg) is False
    assert msg.observations == []


def test_find_gives_up_after_max_iterations():
    finder, state = make_finder(threshold=1e9, max_iterations=3)
    msg = CalibrationData()
    assert finder.find(msg) is False
    assert len(state["calls"]) == 5
    assert msg.observations == []


def test_find_rejects_feature_far_from_expected_pose():
    def shifted(point, target_frame):
        out = identity_transform(point, target_frame)
        if target_frame == "gripper":
            out.point.x += 1.0
        return out

    finder, _ = make_finder(transform=shifted)
    msg = CalibrationData()
    assert finder.find(msg) is False
    assert msg.observations == []


def test_codes_alternate_on_and_off():
    finder = LedFinder(
        "led",
        [{"code": 3, "x": 0, "y": 0, "z": 0}, {"code": 7, "x": 1, "y": 0, "z": 0}],
        lambda code: None, lambda: None, identity_transform,
    )
    assert finder.codes == [3, 0, 7, 0]
    assert [t.point.x for t in finder.trackers] == [0.0, 1.0]
    assert math.isclose(distance_points(finder.trackers[0].point, finder.trackers[1].point), 1.0)