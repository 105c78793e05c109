import pytest

from keyframe_capture.metadata import xmp as tags
from keyframe_capture.metadata.xmp import CAMERA_NAMESPACE, XMPMetadata


def test_set_and_get_tags():
    metadata = XMPMetadata()
    metadata.set_tag(tags.XMP_CAMERA_YAW, "12.5")
    metadata.set_tag(tags.XMP_MAKE, "Apple")

    assert metadata.get(tags.XMP_CAMERA_YAW) == "12.5"
    assert tags.XMP_MAKE in metadata
    assert len(metadata) == 2


def test_unknown_prefix_is_rejected():
    metadata = XMPMetadata()
    with pytest.raises(ValueError):
        metadata.set_tag("dc:title", "x")
    with pytest.raises(ValueError):
        metadata.set_tag("NoPrefix", "x")


def test_packet_uses_camera_namespace():
    metadata = XMPMetadata()
    metadata.set_tag(tags.XMP_CAMERA_CAPTURE_UUID, "abc123")

    packet = metadata.to_bytes()

    assert packet.startswith(b"<?xpacket begin=")
    assert packet.rstrip().endswith(b'<?xpacket end="w"?>')
    assert CAMERA_NAMESPACE.encode() in packet


def test_packet_round_trip():
    metadata = XMPMetadata()
    metadata.set_tag(tags.XMP_CAMERA_RTK_LATITUDE, "37.422")
    metadata.set_tag(tags.XMP_GPS_LATITUDE_REF, "N")
    metadata.set_tag(tags.XMP_PHOTOSHOP_CREATED_DATE, "2024-05-01T10:00:00.000")
    metadata.set_tag(tags.XMP_LENS_MODEL, "iOS")

    parsed = XMPMetadata.from_bytes(metadata.to_bytes())

    assert dict(parsed) == dict(metadata)


def test_from_bytes_without_packet_fails():
    with pytest.raises(ValueError):
        XMPMetadata.from_bytes(b"<nothing/>")
