from ladder import build_ladder
from playlist import generate_master_playlist


def test_master_playlist_for_full_hd():
    playlist = generate_master_playlist(build_ladder(1920, 1080, "/out"))

    assert playlist == "\n".join([
        "#EXTM3U",
        "#EXT-X-STREAM-INF:BANDWIDTH=250000,RESOLUTION=640x360",
        "360p/index.m3u8",
        "#EXT-X-STREAM-INF:BANDWIDTH=500000,RESOLUTION=854x480",
        "480p/index.m3u8",
        "#EXT-X-STREAM-INF:BANDWIDTH=750000,RESOLUTION=1280x720",
        "720p/index.m3u8",
        "#EXT-X-STREAM-INF:BANDWIDTH=1000000,RESOLUTION=1920x1080",
        "1080p/index.m3u8",
    ])


def test_regenerating_is_byte_identical():
    rungs = build_ladder(4320, 2430, "/out")
    assert generate_master_playlist(rungs).encode() == generate_master_playlist(list(rungs)).encode()


def test_no_trailing_newline():
    assert not generate_master_playlist(build_ladder(640, 360, "/out")).endswith("\n")
