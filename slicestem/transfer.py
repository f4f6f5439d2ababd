"""Module to describe the probe aperture and phase aberrations."""

from __future__ import annotations

import copy
from typing import Any, Mapping, Optional

import numpy as np

from slicestem.core.utils import EqualityMixin, get_dtype

polar_aliases = {
    "defocus": "C10",
    "Cs": "C30",
    "C5": "C50",
    "astigmatism": "C12",
    "astigmatism_angle": "phi12",
    "astigmatism3": "C32",
    "astigmatism3_angle": "phi32",
    "astigmatism5": "C52",
    "astigmatism5_angle": "phi52",
    "coma": "C21",
    "coma_angle": "phi21",
    "coma4": "C41",
    "coma4_angle": "phi41",
    "trefoil": "C23",
    "trefoil_angle": "phi23",
    "trefoil4": "C43",
    "trefoil4_angle": "phi43",
    "quadrafoil": "C34",
    "quadrafoil_angle": "phi34",
    "quadrafoil5": "C54",
    "quadrafoil5_angle": "phi54",
    "pentafoil": "C45",
    "pentafoil_angle": "phi45",
    "hexafoil": "C56",
    "hexafoil_angle": "phi56",
}

polar_symbols = {value: key for key, value in polar_aliases.items()}


def soft_aperture(
    alpha: np.ndarray,
    phi: np.ndarray,
    semiangle_cutoff: float,
    angular_sampling: tuple[float, float],
) -> np.ndarray:
    """
    Calculates an array with a disk of ones and a soft edge. The edge is a linear ramp
    with a width of one pixel along the direction of each pixel.

    Parameters
    ----------
    alpha : 2D array
        Array of radial angles [rad].
    phi : 2D array
        Array of azimuthal angles [rad].
    semiangle_cutoff : float
        Semiangle cutoff of the aperture [mrad].
    angular_sampling : tuple of float
        Reciprocal-space sampling in units of scattering angles [mrad].

    Returns
    -------
    soft_aperture_array : 2D np.ndarray
        Aperture in FFT ordering with the zero-frequency pixel set to one.
    """
    angular_sampling = np.array(angular_sampling, dtype=np.float64) * 1e-3

    denominator = np.sqrt(
        (np.cos(phi) * angular_sampling[0]) ** 2
        + (np.sin(phi) * angular_sampling[1]) ** 2
    )
    denominator[0, 0] = 1.0

    array = np.clip(
        (semiangle_cutoff * 1e-3 - alpha) / denominator + 0.5, a_min=0.0, a_max=1.0
    )

    array[0, 0] = 1.0
    return array


def _parse_symbol(symbol: str) -> tuple[int, int]:
    # "C23" and "phi23" both refer to radial order 2 and azimuthal order 3
    digits = symbol[1:] if symbol.startswith("C") else symbol[3:]
    return int(digits[0]), int(digits[1])


class Aberrations(EqualityMixin):
    """
    Phase aberrations of the probe-forming lens as a polar expansion.

    The phase error is

        chi(alpha, phi) = 2 pi / lambda * sum_nm alpha^(n + 1) / (n + 1)
                          * C_nm * cos(m * (phi - phi_nm)).

    Parameters
    ----------
    aberration_coefficients: dict, optional
        Mapping from aberration symbols, or their aliases, to their corresponding values.
        All aberration magnitudes should be given in [Å] and angles should be given in
        [radian].
    kwargs : dict, optional
        Optionally provide the aberration coefficients as keyword arguments.
    """

    def __init__(
        self,
        aberration_coefficients: Optional[Mapping[str, float]] = None,
        **kwargs: Any,
    ):
        self._aberration_coefficients = {symbol: 0.0 for symbol in polar_symbols}

        aberration_coefficients = (
            {} if aberration_coefficients is None else aberration_coefficients
        )
        self.set_aberrations({**aberration_coefficients, **kwargs})

    @property
    def aberration_coefficients(self) -> Mapping[str, float]:
        """The aberration coefficients as a dictionary."""
        return copy.deepcopy(self._aberration_coefficients)

    @property
    def defocus(self) -> float:
        """The defocus [Å], equivalent to negative C10."""
        return -self._aberration_coefficients["C10"]

    @defocus.setter
    def defocus(self, value: float) -> None:
        self._aberration_coefficients["C10"] = -float(value)

    @property
    def has_aberrations(self) -> bool:
        """True if any aberration magnitude is non-zero."""
        return any(
            value != 0.0
            for symbol, value in self._aberration_coefficients.items()
            if symbol.startswith("C")
        )

    def set_aberrations(self, aberration_coefficients: Mapping[str, float]) -> None:
        """
        Set the phase of the phase aberration.

        Parameters
        ----------
        aberration_coefficients : dict
            Mapping from aberration symbols to their corresponding values.
        """
        for symbol, value in aberration_coefficients.items():
            if symbol == "defocus":
                self.defocus = value
                continue

            symbol = polar_aliases.get(symbol, symbol)

            if symbol not in polar_symbols:
                raise ValueError(f"{symbol} not a recognized parameter")

            self._aberration_coefficients[symbol] = float(value)

    def chi(self, alpha: np.ndarray, phi: np.ndarray, wavelength: float) -> np.ndarray:
        """
        Evaluate the phase error.

        Parameters
        ----------
        alpha : np.ndarray
            Scattering angles [rad].
        phi : np.ndarray
            Azimuthal angles [rad].
        wavelength : float
            Electron wavelength [Å].

        Returns
        -------
        chi : np.ndarray
            Phase error [rad].
        """
        array = np.zeros(np.broadcast(alpha, phi).shape, dtype=np.float64)

        for symbol, value in self._aberration_coefficients.items():
            if not symbol.startswith("C") or value == 0.0:
                continue

            n, m = _parse_symbol(symbol)

            term = alpha ** (n + 1) / (n + 1) * value

            if m > 0:
                angle = self._aberration_coefficients[f"phi{n}{m}"]
                term = term * np.cos(m * (phi - angle))

            array = array + term

        return 2 * np.pi / wavelength * array

    def evaluate(
        self, alpha: np.ndarray, phi: np.ndarray, wavelength: float
    ) -> np.ndarray:
        """
        Evaluate the aberration phase factor exp(-i chi).

        Parameters
        ----------
        alpha : np.ndarray
            Scattering angles [rad].
        phi : np.ndarray
            Azimuthal angles [rad].
        wavelength : float
            Electron wavelength [Å].
        """
        if not self.has_aberrations:
            return np.ones(np.broadcast(alpha, phi).shape, dtype=get_dtype(complex=True))

        return np.exp(-1.0j * self.chi(alpha, phi, wavelength))

