import hashlib
import io

import numpy as np
import pytest

import fixed_mandel_render
from fixed_mandel import iterate, map_intensity
from fixed_mandel_render import (HEIGHT, OFFSET_I, OFFSET_R, PRESETS, WIDTH, Preset, find_preset,
                                 format_header, main, render, render_preset, to_int16, write_pgm)


# sha256 of the reference rasters with the trailing space of each row removed;
# image4 additionally has its 16s (bit length of 65535) saturated to 15
REFERENCE_SHA256 = {
    "image1.pgm": "c86f454c30b15f37ec73b9f2cb17e8a1141e379b89ade6de49c8c468be6c648b",
    "image2.pgm": "b6e912eeb7d1923a5d8050621262a595495a0f4151329d56c369f54f84ab21a5",
    "image3.pgm": "2f026c59516f052c49693461122bcdc989603467ee1221a54a6f5a5f8d892b4e",
    "image4.pgm": "3d5f2bc9dbb37d4690d9d02d3ba1dd9f36e64b64cba7f497eb21cb917287e3f1",
}


def read_pgm(text):
    lines = text.splitlines()
    header, rows = lines[:3], lines[3:]
    return header, [[int(v) for v in row.split()] for row in rows]


def test_to_int16():
    assert to_int16(0xF3CA) == -3126
    assert to_int16(0xBC40) == -17344
    assert to_int16(0x7FFF + 1) == -0x8000
    assert to_int16(-1) == -1


def test_viewport_offsets():
    assert OFFSET_R == -2876
    assert OFFSET_I == -17144


def test_presets_table():
    assert [tuple(p)[1:] for p in PRESETS] == [
        (1, 64, 4),
        (128, 64, 4),
        (128, 65536, 4096),
        (128, 65536, 0),
    ]
    assert find_preset("image4") is PRESETS[3]
    assert find_preset("image1.pgm") is PRESETS[0]
    with pytest.raises(KeyError):
        find_preset("image5")


def test_format_header():
    assert format_header(WIDTH, HEIGHT) == "P2\n400 300\n15\n"


def test_write_pgm():
    grid = np.array([[0, 1, 2], [15, 14, 13]], dtype=np.uint8)
    out = io.StringIO()
    write_pgm(out, grid)
    assert out.getvalue() == "P2\n3 2\n15\n0 1 2\n15 14 13\n"


def test_render_first_pixel_matches_reference():
    # pixel (0, 0) of image1 sits on the viewport origin
    assert iterate(OFFSET_R, OFFSET_I, 64) == 13
    assert map_intensity(13, 4) == 3
    grid = render(4, 3, 1, OFFSET_R, OFFSET_I, 64, 4)
    assert grid[0, 0] == 3


@pytest.mark.parametrize("kwargs", [
    dict(width=0),
    dict(height=-1),
    dict(scale=0),
    dict(max_iterations=0),
    dict(divisor=-1),
])
def test_render_rejects_bad_parameters(kwargs):
    params = dict(width=4, height=3, scale=1, offset_r=0, offset_i=0,
                  max_iterations=8, divisor=1)
    params.update(kwargs)
    with pytest.raises(ValueError):
        render(**params)


@pytest.mark.parametrize("preset", PRESETS[:2], ids=lambda p: p.filename)
def test_render_preset(tmp_path, preset):
    path = render_preset(preset, str(tmp_path))
    with open(path) as f:
        header, rows = read_pgm(f.read())
    assert header == ["P2", "400 300", "15"]
    assert len(rows) == HEIGHT
    assert all(len(row) == WIDTH for row in rows)
    values = np.array(rows)
    assert values.min() >= 0
    assert values.max() <= 15

    for x, y in [(0, 0), (399, 0), (200, 150), (0, 299), (399, 299)]:
        cr = preset.scale * x + OFFSET_R
        ci = preset.scale * y + OFFSET_I
        expected = map_intensity(iterate(cr, ci, preset.max_iterations), preset.divisor)
        assert rows[y][x] == expected


def test_header_is_independent_of_parameters(monkeypatch, tmp_path):
    # shrink the image so the long presets stay quick
    monkeypatch.setattr(fixed_mandel_render, "WIDTH", 5)
    monkeypatch.setattr(fixed_mandel_render, "HEIGHT", 4)
    for preset in PRESETS:
        small = Preset(preset.filename, preset.scale, 256, preset.divisor)
        with open(render_preset(small, str(tmp_path))) as f:
            header, rows = read_pgm(f.read())
        assert header == ["P2", "5 4", "15"]
        assert len(rows) == 4


def test_main_renders_selected_preset(tmp_path):
    assert main(["-o", str(tmp_path), "-p", "image1"]) == 0
    assert sorted(p.name for p in tmp_path.iterdir()) == ["image1.pgm"]


def test_main_custom_to_stdout(capsys):
    assert main(["custom", "--width", "6", "--height", "2", "--scale", "128",
                 "--max-iterations", "64", "--divisor", "0"]) == 0
    header, rows = read_pgm(capsys.readouterr().out)
    assert header == ["P2", "6 2", "15"]
    assert len(rows) == 2
    assert all(len(row) == 6 for row in rows)


def test_main_custom_to_file(tmp_path):
    out = tmp_path / "small.pgm"
    assert main(["custom", "--width", "3", "--height", "3", "-o", str(out)]) == 0
    header, rows = read_pgm(out.read_text())
    assert header == ["P2", "3 3", "15"]


def test_main_rejects_negative_divisor():
    with pytest.raises(SystemExit) as exc:
        main(["custom", "--divisor", "-2"])
    assert exc.value.code == 2


def test_main_reports_unwritable_output(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("")
    assert main(["-o", str(blocker / "out"), "-p", "image1"]) == 1


def sha256_of(path):
    with open(path, "rb") as f:
        return hashlib.sha256(f.read()).hexdigest()


@pytest.mark.parametrize("preset", PRESETS[:2], ids=lambda p: p.filename)
def test_preset_matches_reference_raster(tmp_path, preset):
    path = render_preset(preset, str(tmp_path))
    assert sha256_of(path) == REFERENCE_SHA256[preset.filename]


@pytest.mark.slow
@pytest.mark.parametrize("preset", PRESETS[2:], ids=lambda p: p.filename)
def test_deep_preset_matches_reference_raster(tmp_path, preset):
    path = render_preset(preset, str(tmp_path))
    assert sha256_of(path) == REFERENCE_SHA256[preset.filename]


def test_main_without_subcommand_renders_every_preset(monkeypatch, tmp_path):
    monkeypatch.setattr(fixed_mandel_render, "WIDTH", 5)
    monkeypatch.setattr(fixed_mandel_render, "HEIGHT", 4)
    monkeypatch.setattr(fixed_mandel_render, "PRESETS", (
        Preset("small1.pgm", 1, 64, 4),
        Preset("small2.pgm", 128, 64, 0),
    ))
    out = tmp_path / "out"
    assert main(["-o", str(out)]) == 0
    assert sorted(p.name for p in out.iterdir()) == ["small1.pgm", "small2.pgm"]


def test_main_rejects_coordinates_beyond_fixed_point_range():
    with pytest.raises(SystemExit) as exc:
        main(["custom", "--width", "1", "--height", "1", "--offset-r", "3037000500"])
    assert exc.value.code == 2
