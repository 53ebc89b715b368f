from __future__ import annotations

MILEAGE_TOLERANCE_RATIO = 0.1
MILEAGE_TOLERANCE_MIN_KM = 1000


def mileage_tolerance(reference: float | int | None) -> float:
    """10% of the reference reading, never less than 1000 km."""
    return max((reference or 0) * MILEAGE_TOLERANCE_RATIO, MILEAGE_TOLERANCE_MIN_KM)


def mileage_floor(reference: float | int | None, tolerance_base: float | int | None = None) -> float:
    base = reference if tolerance_base is None else tolerance_base
    return (reference or 0) - mileage_tolerance(base)


def is_mileage_acceptable(
    new_mileage: float | int,
    reference: float | int | None,
    tolerance_base: float | int | None = None,
) -> bool:
    return new_mileage >= mileage_floor(reference, tolerance_base)


def _km(value: float | int) -> str:
    return f"{value:,.0f}"


def check_service_mileage(new_mileage: int | None, current_mileage: int | None) -> str | None:
    """
    Service note odometer check. Only applied when a reading was entered
    and the vehicle has a known mileage.
    """
    if not new_mileage or not current_mileage or current_mileage <= 0:
        return None

    if is_mileage_acceptable(new_mileage, current_mileage):
        return None

    return (
        f"Mileage cannot be significantly lower than {_km(current_mileage)} km. "
        f"Tolerance: {_km(mileage_tolerance(current_mileage))} km."
    )


def check_inspection_mileage(
    new_mileage: int | None,
    current_mileage: int | None,
    original_mileage: int | None = None,
) -> str | None:
    """
    Inspection odometer check. Tolerance always comes from the vehicle's
    current mileage; when editing, the original reading is also a floor.
    """
    new_value = new_mileage or 0
    tolerance = mileage_tolerance(current_mileage)

    if original_mileage is not None and new_value < original_mileage - tolerance:
        return (
            f"Mileage cannot be decreased significantly. Original value: {_km(original_mileage)} km, "
            f"tolerance: {_km(tolerance)} km."
        )

    if current_mileage and new_value < current_mileage - tolerance:
        return (
            f"Mileage cannot be significantly lower than {_km(current_mileage)} km. "
            f"Tolerance: {_km(tolerance)} km."
        )

    return None


def check_fuel_level(fuel_level: float | None) -> str | None:
    if fuel_level is None:
        return None
    if fuel_level < 0 or fuel_level > 100:
        return "Fuel level must be between 0 and 100%."
    return None
