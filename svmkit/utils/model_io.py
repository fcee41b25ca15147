"""
Model persistence in the libsvm text format.

A header of `keyword value...` lines is followed by `SV` and one line per
support vector: its `nr_class - 1` coefficients, then `index:value` pairs.
"""

import os
from typing import Dict, List, Optional, TextIO, Union

import numpy as np

from ..core.structs import FeatureVector, KernelType, Parameter, SVMType
from ..exceptions import ModelFormatError
from ..ml.model import Model

PathLike = Union[str, os.PathLike]

HEADER_KEYWORDS = ('svm_type', 'kernel_type', 'degree', 'gamma', 'coef0', 'nr_class',
                   'total_sv', 'rho', 'label', 'probA', 'probB', 'nr_sv')


def _format_floats(values) -> str:
    return ' '.join(f"{float(v):.17g}" for v in values)


def save_model(path: PathLike, model: Model):
    """
    Write a model to a text file.

    Args:
        path: Destination file
        model: Trained model
    """
    with open(path, 'w', encoding='utf-8') as fh:
        write_model(fh, model)


def write_model(fh: TextIO, model: Model):
    """Write a model to an open text stream."""
    param = model.param
    kernel_type = param.kernel_type

    fh.write(f"svm_type {param.svm_type.value}\n")
    fh.write(f"kernel_type {kernel_type.value}\n")

    if kernel_type == KernelType.POLYNOMIAL:
        fh.write(f"degree {int(param.degree)}\n")

    if kernel_type in (KernelType.POLYNOMIAL, KernelType.RBF, KernelType.SIGMOID):
        fh.write(f"gamma {param.gamma:.17g}\n")

    if kernel_type in (KernelType.POLYNOMIAL, KernelType.SIGMOID):
        fh.write(f"coef0 {param.coef0:.17g}\n")

    fh.write(f"nr_class {model.nr_class}\n")
    fh.write(f"total_sv {model.l}\n")
    fh.write(f"rho {_format_floats(model.rho)}\n")

    if model.label is not None:
        fh.write(f"label {' '.join(str(v) for v in model.label)}\n")

    if model.probA is not None:
        fh.write(f"probA {_format_floats(model.probA)}\n")

    if model.probB is not None:
        fh.write(f"probB {_format_floats(model.probB)}\n")

    if model.nSV is not None:
        fh.write(f"nr_sv {' '.join(str(v) for v in model.nSV)}\n")

    fh.write("SV\n")
    sv_coef = model.sv_coef
    for i, sv in enumerate(model.SV):
        coefficients = ''.join(f"{c:.17g} " for c in sv_coef[:, i])
        if kernel_type == KernelType.PRECOMPUTED:
            features = f"0:{int(sv.values[0])} "
        else:
            features = ''.join(f"{index}:{value:.8g} " for index, value in sv)
        fh.write(coefficients + features + "\n")


def load_model(path: PathLike) -> Model:
    """
    Read a model from a text file.

    Args:
        path: Model file written by `save_model` or libsvm

    Returns:
        The model

    Raises:
        ModelFormatError: On an unknown header keyword or value, or a
            missing, truncated or malformed SV section
    """
    with open(path, 'r', encoding='utf-8') as fh:
        return read_model(fh)


def _parse(kind, text: str, keyword: str):
    try:
        return kind(text)
    except ValueError:
        raise ModelFormatError(f"Invalid value {text!r} for {keyword}") from None


def _check_header(svm_type: SVMType, nr_class: int, total_sv: int, rho: List[float],
                  label: Optional[List[int]], nSV: Optional[List[int]],
                  probA: Optional[List[float]], probB: Optional[List[float]]):
    """Reject header values that disagree with each other."""
    if total_sv < 0:
        raise ModelFormatError(f"total_sv must be non-negative, got {total_sv}")

    if svm_type.is_classification:
        if nr_class < 2:
            raise ModelFormatError(f"nr_class must be at least 2, got {nr_class}")
        n_pairs = nr_class * (nr_class - 1) // 2
    else:
        if nr_class != 2:
            raise ModelFormatError(f"nr_class must be 2 for {svm_type.value}, got {nr_class}")
        n_pairs = 1

    if len(rho) != n_pairs:
        raise ModelFormatError(f"rho has {len(rho)} values, expected {n_pairs}")

    for keyword, values in (('probA', probA), ('probB', probB)):
        if values is not None and len(values) != n_pairs:
            raise ModelFormatError(f"{keyword} has {len(values)} values, expected {n_pairs}")

    if not svm_type.is_classification:
        return

    for keyword, values in (('label', label), ('nr_sv', nSV)):
        if values is None:
            raise ModelFormatError(f"Model file is missing {keyword}")
        if len(values) != nr_class:
            raise ModelFormatError(f"{keyword} has {len(values)} values, expected {nr_class}")

    if any(n < 0 for n in nSV) or sum(nSV) != total_sv:
        raise ModelFormatError(f"nr_sv {' '.join(map(str, nSV))} does not add up to "
                               f"total_sv {total_sv}")


def read_model(fh: TextIO) -> Model:
    """Read a model from an open text stream."""
    header: Dict[str, List[str]] = {}
    lines = iter(fh)

    for line in lines:
        tokens = line.split()
        if not tokens:
            continue
        keyword, values = tokens[0], tokens[1:]
        if keyword == 'SV':
            break
        if keyword not in HEADER_KEYWORDS:
            raise ModelFormatError(f"Unknown text in model file: [{keyword}]")
        if not values:
            raise ModelFormatError(f"Missing value for {keyword}")
        header[keyword] = values
    else:
        raise ModelFormatError("Model file has no SV section")

    for required in ('svm_type', 'kernel_type', 'nr_class', 'total_sv', 'rho'):
        if required not in header:
            raise ModelFormatError(f"Model file is missing {required}")

    try:
        svm_type = SVMType(header['svm_type'][0])
    except ValueError:
        raise ModelFormatError(f"Unknown svm type: {header['svm_type'][0]}") from None

    try:
        kernel_type = KernelType(header['kernel_type'][0])
    except ValueError:
        raise ModelFormatError(f"Unknown kernel type: {header['kernel_type'][0]}") from None

    def floats(keyword: str) -> Optional[List[float]]:
        if keyword not in header:
            return None
        return [_parse(float, v, keyword) for v in header[keyword]]

    def ints(keyword: str) -> Optional[List[int]]:
        if keyword not in header:
            return None
        return [_parse(int, v, keyword) for v in header[keyword]]

    param = Parameter(svm_type=svm_type, kernel_type=kernel_type,
                      degree=ints('degree')[0] if 'degree' in header else 3,
                      gamma=floats('gamma')[0] if 'gamma' in header else 0.0,
                      coef0=floats('coef0')[0] if 'coef0' in header else 0.0)

    nr_class = ints('nr_class')[0]
    total_sv = ints('total_sv')[0]
    rho, label, nSV = floats('rho'), ints('label'), ints('nr_sv')
    probA, probB = floats('probA'), floats('probB')
    _check_header(svm_type, nr_class, total_sv, rho, label, nSV, probA, probB)
    n_coef = max(nr_class - 1, 1)

    SV: List[FeatureVector] = []
    sv_coef = np.zeros((n_coef, total_sv))

    for i in range(total_sv):
        tokens = next(lines, '').split()
        if len(tokens) < n_coef:
            raise ModelFormatError(f"SV section truncated: expected {total_sv} vectors, got {i}")

        sv_coef[:, i] = [_parse(float, v, 'sv_coef') for v in tokens[:n_coef]]

        indices, values = [], []
        for token in tokens[n_coef:]:
            index, sep, value = token.partition(':')
            if not sep:
                raise ModelFormatError(f"Malformed feature {token!r} in SV line {i + 1}")
            indices.append(_parse(int, index, 'feature index'))
            values.append(_parse(float, value, 'feature value'))

        try:
            SV.append(FeatureVector(indices, values))
        except ValueError as e:
            raise ModelFormatError(f"SV line {i + 1}: {e}") from None

    return Model(param=param, nr_class=nr_class, SV=SV, sv_coef=sv_coef,
                 rho=rho, label=label, nSV=nSV, probA=probA, probB=probB)
