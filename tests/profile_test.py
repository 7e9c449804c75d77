from __future__ import annotations

import pydantic
import pytest

from peermatch.profile import Coordinate
from peermatch.profile import distance
from peermatch.profile import Profile
from peermatch.profile import profile_distance


def test_one_degree_of_longitude_at_equator() -> None:
    a = Coordinate(latitude=0, longitude=0)
    b = Coordinate(latitude=0, longitude=1)
    assert distance(a, b) == pytest.approx(111.19, abs=0.1)


def test_distance_is_symmetric_and_zero_for_same_point() -> None:
    berlin = Coordinate(latitude=52.52, longitude=13.405)
    paris = Coordinate(latitude=48.8566, longitude=2.3522)
    assert distance(berlin, berlin) == 0
    assert distance(berlin, paris) == pytest.approx(distance(paris, berlin))
    assert distance(berlin, paris) == pytest.approx(878, rel=0.01)


def test_antipodal_points() -> None:
    a = Coordinate(latitude=0, longitude=0)
    b = Coordinate(latitude=0, longitude=180)
    assert distance(a, b) == pytest.approx(20015.09, abs=0.1)


@pytest.mark.parametrize(
    ('latitude', 'longitude'),
    ((91, 0), (-91, 0), (0, 181), (0, -181)),
)
def test_coordinate_out_of_range(latitude: float, longitude: float) -> None:
    with pytest.raises(pydantic.ValidationError):
        Coordinate(latitude=latitude, longitude=longitude)


def test_profile_distance_requires_both_locations() -> None:
    here = Profile(location=Coordinate(latitude=0, longitude=0))
    there = Profile(location=Coordinate(latitude=0, longitude=1))
    nowhere = Profile()

    assert profile_distance(here, there) == pytest.approx(111.19, abs=0.1)
    assert profile_distance(here, nowhere) is None
    assert profile_distance(nowhere, here) is None


def test_profile_display_name() -> None:
    assert Profile(name='Alice').display_name == 'Alice'
    assert Profile().display_name == 'Anonymous'


def test_profile_repr_hides_picture() -> None:
    profile = Profile(name='Alice', picture=b'\x89PNG')
    assert 'PNG' not in repr(profile)
