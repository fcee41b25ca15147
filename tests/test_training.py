import numpy as np
import pytest

from svmkit.core.structs import FeatureVector, Parameter, Problem
from svmkit.ml.model import sigmoid_predict
from svmkit.ml.training import (cross_validation, cross_validation_score, group_classes,
                                sigmoid_train, train)
from svmkit.utils.data import to_problem


class TestGroupClasses:
    def test_first_occurrence_order(self):
        problem = Problem((label, FeatureVector()) for label in [3, 1, 3, 2])
        labels, start, count, perm = group_classes(problem)
        assert labels == [3, 1, 2]
        assert start.tolist() == [0, 2, 3]
        assert count.tolist() == [2, 1, 1]
        assert perm.tolist() == [0, 2, 1, 3]

    def test_minus_one_first_is_swapped(self):
        problem = Problem((label, FeatureVector()) for label in [-1, 1, 1])
        labels, start, count, perm = group_classes(problem)
        assert labels == [1, -1]
        assert count.tolist() == [2, 1]
        assert perm.tolist() == [1, 2, 0]


class TestClassification:
    def test_xor_with_rbf(self, xor_problem):
        model = train(xor_problem, Parameter(kernel_type='rbf', C=100))

        for label, x in xor_problem:
            assert model.predict(x) == label
        assert model.label == [1, -1]
        assert model.param.gamma == pytest.approx(0.5)

    def test_separable_points_generalize(self):
        problem = Problem([(-1, FeatureVector.from_dense([0, 0])),
                           (-1, FeatureVector.from_dense([0, 1])),
                           (+1, FeatureVector.from_dense([3, 0])),
                           (+1, FeatureVector.from_dense([3, 1]))])
        model = train(problem, Parameter(kernel_type='rbf', C=100))

        for label, x in problem:
            assert model.predict(x) == label
        assert model.predict(FeatureVector.from_dense([-1, 0.5])) == -1
        assert model.predict(FeatureVector.from_dense([4, 0.5])) == 1

    def test_xor_support_vectors_sit_on_the_margin(self, xor_problem):
        model = train(xor_problem, Parameter(kernel_type='rbf', C=100))

        assert model.l == 4
        for label, x in xor_problem:
            _, dec_values = model.predict_values(x)
            assert dec_values[0] == pytest.approx(label, abs=1e-2)

    def test_sv_indices_point_into_problem(self, xor_problem):
        model = train(xor_problem, Parameter(kernel_type='rbf', C=100))

        assert sorted(model.sv_indices) == [1, 2, 3, 4]
        for sv, index in zip(model.SV, model.sv_indices):
            assert sv == xor_problem.x[index - 1]

    def test_multiclass(self, three_blobs):
        X, y = three_blobs
        problem = to_problem(X, y)
        model = train(problem, Parameter(kernel_type='rbf'))

        assert model.label == [2, 0, 5]
        assert model.nr_class == 3
        assert sum(model.nSV) == model.l
        assert model.sv_coef.shape == (2, model.l)
        assert len(model.rho) == 3
        predictions = np.array([model.predict(x) for x in problem.x])
        assert np.all(predictions == y)

        # support vectors are grouped by class
        sv_labels = [problem.y[i - 1] for i in model.sv_indices]
        expected = [2] * model.nSV[0] + [0] * model.nSV[1] + [5] * model.nSV[2]
        assert sv_labels == expected

    def test_multiclass_coefficients_are_stratified(self, three_blobs):
        X, y = three_blobs
        model = train(to_problem(X, y), Parameter(kernel_type='linear'))

        n0, n1, n2 = model.nSV
        seg0, seg1, seg2 = slice(0, n0), slice(n0, n0 + n1), slice(n0 + n1, n0 + n1 + n2)
        coef = model.sv_coef

        # class i of pair (i, j) is the positive side
        assert np.all(coef[0, seg0] >= 0) and np.all(coef[1, seg0] >= 0)
        assert np.all(coef[0, seg1] <= 0) and np.all(coef[1, seg1] >= 0)
        assert np.all(coef[0, seg2] <= 0) and np.all(coef[1, seg2] <= 0)

        # every pair balances its signed coefficients
        assert coef[0, seg0].sum() + coef[0, seg1].sum() == pytest.approx(0, abs=1e-9)
        assert coef[1, seg0].sum() + coef[0, seg2].sum() == pytest.approx(0, abs=1e-9)
        assert coef[1, seg1].sum() + coef[1, seg2].sum() == pytest.approx(0, abs=1e-9)

    def test_nu_svc_support_vector_fraction(self, two_blobs):
        X, y = two_blobs
        problem = to_problem(X, y)
        model = train(problem, Parameter(svm_type='nu_svc', kernel_type='rbf', nu=0.5))

        # nu lower-bounds the fraction of support vectors
        assert model.l >= 0.5 * problem.l - 1e-9
        predictions = np.array([model.predict(x) for x in problem.x])
        assert np.mean(predictions == y) >= 0.95

    def test_infeasible_nu_raises(self):
        problem = Problem((label, FeatureVector([1], [float(i)]))
                          for i, label in enumerate([1, 1] + [-1] * 10))
        with pytest.raises(ValueError, match="specified nu is infeasible"):
            train(problem, Parameter(svm_type='nu_svc', nu=0.9))

    def test_single_class_warns(self):
        problem = Problem((3, FeatureVector([1], [float(i)])) for i in range(5))
        with pytest.warns(UserWarning, match="only one class"):
            model = train(problem, Parameter(kernel_type='linear'))
        assert model.predict(FeatureVector([1], [10.0])) == 3

    def test_unknown_weight_label_warns(self, xor_problem):
        with pytest.warns(UserWarning, match="Class label 7 specified in weight is not found"):
            train(xor_problem, Parameter(kernel_type='rbf', C=100, weights={7: 2.0}))

    def test_class_weight_scales_bounds(self, overlapping_blobs):
        X, y = overlapping_blobs
        problem = to_problem(X, y)
        model = train(problem, Parameter(kernel_type='linear', C=0.1, weights={1: 5.0}))

        coef = model.sv_coef[0]
        assert np.all(coef <= 0.5 + 1e-12)
        assert np.all(coef >= -0.1 - 1e-12)
        # the weighted class reaches beyond the unweighted bound
        assert coef.max() > 0.1


class TestOneClassAndRegression:
    def test_one_class(self, overlapping_blobs):
        X, _ = overlapping_blobs
        problem = to_problem(X, np.ones(len(X)))
        model = train(problem, Parameter(svm_type='one_class', kernel_type='rbf', nu=0.1))

        assert model.l >= 0.1 * problem.l - 1e-9
        assert model.label is None
        assert model.predict(FeatureVector.from_dense([20.0, 20.0])) == -1
        predictions = np.array([model.predict(x) for x in problem.x])
        assert set(predictions.tolist()) <= {-1.0, 1.0}
        assert np.mean(predictions == 1) >= 0.7

    def test_epsilon_svr_fits_line(self, linear_targets):
        X, y = linear_targets
        problem = to_problem(X, y)
        model = train(problem, Parameter(svm_type='epsilon_svr', kernel_type='linear',
                                         C=100, p=0.01))

        predictions = np.array([model.predict(x) for x in problem.x])
        assert np.max(np.abs(predictions - y)) < 0.05
        assert model.sv_coef.shape == (1, model.l)
        assert model.nSV is None
        assert all(1 <= i <= problem.l for i in model.sv_indices)

    def test_epsilon_svr_predicts_unseen_inputs_within_tube(self, linear_targets):
        X, y = linear_targets
        model = train(to_problem(X, y), Parameter(svm_type='epsilon_svr', kernel_type='linear',
                                                  C=100, p=0.01))

        for x in [0.033, 0.51, 0.97]:
            prediction = model.predict(FeatureVector.from_dense([x]))
            assert abs(prediction - 2 * x) <= 0.01 + 1e-3

    def test_nu_svr_fits_line(self, linear_targets):
        X, y = linear_targets
        problem = to_problem(X, y)
        model = train(problem, Parameter(svm_type='nu_svr', kernel_type='linear',
                                         C=100, nu=0.5))

        predictions = np.array([model.predict(x) for x in problem.x])
        assert np.mean(np.abs(predictions - y)) < 0.05


class TestProbability:
    def test_sigmoid_train_orients_towards_positive_class(self):
        dec_values = np.array([-3, -2, -1.5, -1, 1, 1.5, 2, 3], dtype=float)
        labels = np.array([-1, -1, -1, -1, 1, 1, 1, 1])
        A, B = sigmoid_train(dec_values, labels)

        assert A < 0
        assert sigmoid_predict(3.0, A, B) > 0.8
        assert sigmoid_predict(-3.0, A, B) < 0.2

    def test_binary_probability(self, two_blobs):
        X, y = two_blobs
        problem = to_problem(X, y)
        model = train(problem, Parameter(kernel_type='linear', probability=True),
                      random_state=0)

        assert len(model.probA) == 1 and len(model.probB) == 1
        assert model.check_probability_model()

        label, estimates = model.predict_probability(FeatureVector.from_dense([10.0, 10.0]))
        assert label == 1
        assert estimates.sum() == pytest.approx(1.0, abs=1e-6)
        assert estimates[model.label.index(1)] >= 0.95

    def test_multiclass_probability(self, three_blobs):
        X, y = three_blobs
        model = train(to_problem(X, y), Parameter(kernel_type='rbf', probability=True),
                      random_state=0)

        assert len(model.probA) == 3
        label, estimates = model.predict_probability(FeatureVector.from_dense([0.0, 4.0]))
        assert label == 2
        assert estimates.sum() == pytest.approx(1.0, abs=1e-6)
        assert np.all(estimates >= 0)
        assert int(np.argmax(estimates)) == model.label.index(2)

    def test_probability_is_reproducible(self, two_blobs):
        X, y = two_blobs
        problem = to_problem(X, y)
        param = Parameter(kernel_type='linear', probability=True)

        first = train(problem, param, random_state=3)
        second = train(problem, param, random_state=3)
        np.testing.assert_array_equal(first.probA, second.probA)
        np.testing.assert_array_equal(first.probB, second.probB)

    def test_svr_noise_scale(self, linear_targets):
        X, y = linear_targets
        rng = np.random.default_rng(11)
        noisy = y + rng.normal(0, 0.1, size=y.shape)
        model = train(to_problem(X, noisy), Parameter(svm_type='epsilon_svr', kernel_type='linear',
                                                      C=10, probability=True),
                      random_state=0)

        sigma = model.get_svr_probability()
        assert 0 < sigma < 1
        assert model.probB is None
        assert model.check_probability_model()


class TestCrossValidation:
    def test_separable_accuracy(self, two_blobs):
        X, y = two_blobs
        score = cross_validation_score(to_problem(X, y), Parameter(kernel_type='linear'),
                                       nr_fold=5, random_state=0)
        assert score == {'accuracy': 1.0}

    def test_predictions_are_reproducible(self, three_blobs):
        X, y = three_blobs
        problem = to_problem(X, y)
        param = Parameter(kernel_type='rbf')

        first = cross_validation(problem, param, 5, random_state=1)
        second = cross_validation(problem, param, 5, random_state=1)
        np.testing.assert_array_equal(first, second)
        assert first.shape == (problem.l,)
        assert set(first.tolist()) <= {0.0, 2.0, 5.0}

    def test_with_probability_outputs(self, two_blobs):
        X, y = two_blobs
        predictions = cross_validation(to_problem(X, y),
                                       Parameter(kernel_type='linear', probability=True),
                                       5, random_state=0)
        np.testing.assert_array_equal(predictions, y)

    def test_regression_scores(self, linear_targets):
        X, y = linear_targets
        score = cross_validation_score(to_problem(X, y),
                                       Parameter(svm_type='epsilon_svr', kernel_type='linear',
                                                 C=100, p=0.01),
                                       nr_fold=5, random_state=0)
        assert score['mean_squared_error'] < 0.01
        assert score['squared_correlation_coefficient'] > 0.99

    def test_too_many_folds_falls_back_to_leave_one_out(self, two_blobs):
        X, y = two_blobs
        problem = to_problem(X[:6], y[:6])
        with pytest.warns(UserWarning, match="Will use # folds = # data"):
            predictions = cross_validation(problem, Parameter(svm_type='one_class',
                                                              kernel_type='rbf'),
                                           10, random_state=0)
        assert predictions.shape == (6,)

    def test_needs_two_folds(self, two_blobs):
        X, y = two_blobs
        with pytest.raises(ValueError):
            cross_validation(to_problem(X, y), Parameter(), 1)


def test_verbose_training_reports_totals(capsys, three_blobs):
    X, y = three_blobs
    train(to_problem(X, y), Parameter(kernel_type='linear'), verbose=True)
    assert "Total nSV =" in capsys.readouterr().out
