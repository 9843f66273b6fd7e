import pytest

from robocal.geometry import Rotation, axis_magnitude_from_rotation
from robocal.offset_parser import CalibrationOffsetParser

ROBOT_DESCRIPTION = (
    "<?xml version='1.0' ?>"
    "<robot name='test'>"
    "  <link name='link_0'/>"
    "  <joint name='first_joint' type='fixed'>"
    "    <origin rpy='0 0 0' xyz='1 1 1'/>"
    "    <parent link='link_0'/>"
    "    <child link='link_1'/>"
    "  </joint>"
    "  <link name='link_1'/>"
    "  <joint name='second_joint' type='revolute'>"
    "    <origin rpy='0 0 0' xyz='0 0 0'/>"
    "    <axis xyz='0 0 1'/>"
    "    <limit effort='30' lower='-1.57' upper='1.57' velocity='0.524'/>"
    "    <parent link='link_1'/>"
    "    <child link='link_2'/>"
    "  </joint>"
    "  <link name='link_2'/>"
    "  <joint name='third_joint' type='fixed'>"
    "    <origin rpy='0 -1.5 0' xyz='0 0 0.0526'/>"
    "    <parent link='link_2'/>"
    "    <child link='link_3'/>"
    "  </joint>"
    "  <link name='link_3'/>"
    "</robot>"
)

ROBOT_DESCRIPTION_UPDATED = (
    '<?xml version="1.0" ?>\n'
    '<robot name="test">\n'
    '  <link name="link_0" />\n'
    '  <joint name="first_joint" type="fixed">\n'
    '    <origin rpy="0 0 0" xyz="1 1 1" />\n'
    '    <parent link="link_0" />\n'
    '    <child link="link_1" />\n'
    "  </joint>\n"
    '  <link name="link_1" />\n'
    '  <joint name="second_joint" type="revolute">\n'
    '    <origin rpy="0 0 0" xyz="0 0 0" />\n'
    '    <axis xyz="0 0 1" />\n'
    '    <limit effort="30" lower="-1.57" upper="1.57" velocity="0.524" />\n'
    '    <parent link="link_1" />\n'
    '    <child link="link_2" />\n'
    '    <calibration rising="0.245" />\n'
    "  </joint>\n"
    '  <link name="link_2" />\n'
    '  <joint name="third_joint" type="fixed">\n'
    '    <origin rpy="1.57000000 -1.50000000 0.00000000" xyz="0.00000000 0.00000000 0.05260000" />\n'
    '    <parent link="link_2" />\n'
    '    <child link="link_3" />\n'
    "  </joint>\n"
    '  <link name="link_3" />\n'
    "</robot>"
)


def test_urdf_update():
    p = CalibrationOffsetParser()
    p.add("second_joint")
    p.add_frame("third_joint", True, True, True, True, True, True)

    a, b, c = axis_magnitude_from_rotation(Rotation.from_rpy(1.57, 0, 0))
    p.update([0.245, 0, 0, 0, a, b, c])

    s = p.update_urdf(ROBOT_DESCRIPTION)
    s_pieces = s.split("\n")
    for expected, actual in zip(ROBOT_DESCRIPTION_UPDATED.split("\n"), s_pieces):
        assert actual == expected
    assert len(s_pieces) >= len(ROBOT_DESCRIPTION_UPDATED.split("\n"))


def test_multi_step():
    p = CalibrationOffsetParser()
    p.add("first_step_joint1")
    p.add("first_step_joint2")

    params = [0.245, 0.44]
    p.update(params)
    assert p.get("first_step_joint1") == 0.245
    assert p.get("first_step_joint2") == 0.44
    assert len(p) == 2

    p.reset()
    assert len(p) == 0

    p.add("second_step_joint1")
    assert len(p) == 1

    params[0] *= 2.0
    p.update(params)
    assert p.get("first_step_joint1") == 0.245
    assert p.get("first_step_joint2") == 0.44
    assert p.get("second_step_joint1") == 0.49

    p.reset()
    assert len(p) == 0

    p.add("first_step_joint1")
    assert len(p) == 1

    params[0] *= 2.0
    p.update(params)
    assert p.get("first_step_joint1") == 0.98
    assert p.get("first_step_joint2") == 0.44
    assert p.get("second_step_joint1") == 0.49


def test_add_twice_is_rejected():
    p = CalibrationOffsetParser()
    assert p.add("joint") is True
    assert p.add("joint") is False
    assert len(p) == 1


def test_set_only_changes_free_params():
    p = CalibrationOffsetParser()
    p.add("a")
    p.add("b")
    assert p.set("b", 0.5) is True
    p.reset()
    assert p.set("b", 1.5) is False
    assert p.get("b") == 0.5
    assert p.get("missing") == 0.0


def test_initialize_returns_free_values():
    p = CalibrationOffsetParser()
    p.add("a")
    p.add("b")
    p.update([0.1, 0.2])
    p.reset()
    p.add("b")
    assert p.initialize() == [0.2]


def test_get_frame_unknown_is_none():
    p = CalibrationOffsetParser()
    p.add("joint_x")
    assert p.get_frame("joint") is None


def test_set_frame_round_trip():
    p = CalibrationOffsetParser()
    p.add_frame("cam", True, True, True, True, True, True)
    p.set_frame("cam", 1.0, 2.0, 3.0, 0.1, 0.2, 0.3)
    frame = p.get_frame("cam")
    assert list(frame.position) == [1.0, 2.0, 3.0]
    assert frame.rotation.to_rpy() == pytest.approx((0.1, 0.2, 0.3), abs=1e-9)


def test_offset_yaml_and_load(tmp_path):
    p = CalibrationOffsetParser()
    p.add("first")
    p.add("second")
    p.update([0.245, 0.44])
    text = p.get_offset_yaml()
    assert text == "first: 0.245\nsecond: 0.44\n"

    path = tmp_path / "offsets.yaml"
    path.write_text(text)
    q = CalibrationOffsetParser()
    q.add("first")
    q.add("second")
    q.load_offset_yaml(path)
    assert q.initialize() == [0.245, 0.44]


def test_load_yaml_ignores_non_free_and_garbage(tmp_path):
    path = tmp_path / "offsets.yaml"
    path.write_text("first: 1.5\nother: 2.0\nnot a number\n")
    p = CalibrationOffsetParser()
    p.add("first")
    p.load_offset_yaml(path)
    assert p.get("first") == 1.5
    assert p.get("other") == 0.0


def test_update_urdf_existing_calibration():
    urdf = (
        "<robot name='r'><joint name='j' type='revolute'>"
        "<calibration rising='0.5'/></joint></robot>"
    )
    p = CalibrationOffsetParser()
    p.add("j")
    p.update([0.25])
    assert '<calibration rising="0.75" />' in p.update_urdf(urdf)


def test_update_urdf_adds_origin():
    urdf = "<robot name='r'><joint name='j' type='fixed'/></robot>"
    p = CalibrationOffsetParser()
    p.add_frame("j", True, False, False, False, False, False)
    p.update([0.5])
    out = p.update_urdf(urdf)
    assert '<origin xyz="0.50000000 0.00000000 0.00000000" rpy="0.00000000 0.00000000 0.00000000" />' in out


def test_update_urdf_without_robot_is_unchanged():
    p = CalibrationOffsetParser()
    p.add("j")
    p.update([1.0])
    assert p.update_urdf("<notrobot/>") == "<notrobot/>"
    assert p.update_urdf("not xml <") == "not xml <"