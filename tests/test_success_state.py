import os

from conftest import make_spec, make_step

from intent_use.orchestrator.success_state import SuccessStateResolver


def spec_named(name, **kwargs):
	return make_spec(make_step('a'), name=name, **kwargs)


def test_explicit_screenshot_wins(tmp_path):
	explicit = tmp_path / 'custom.png'
	explicit.write_bytes(b'x')
	(tmp_path / 'Checkout-success-state.png').write_bytes(b'y')

	resolver = SuccessStateResolver(tmp_path)

	assert resolver.find_reference_screenshot(spec_named('Checkout', success_screenshot=str(explicit))) == str(explicit)


def test_missing_explicit_screenshot_falls_back_to_name_candidates(tmp_path):
	(tmp_path / 'my-checkout-flow-success-state.png').write_bytes(b'y')
	resolver = SuccessStateResolver(tmp_path)

	found = resolver.find_reference_screenshot(spec_named('My Checkout Flow', success_screenshot=str(tmp_path / 'gone.png')))

	assert found == str(tmp_path / 'my-checkout-flow-success-state.png')


def test_underscore_candidate(tmp_path):
	(tmp_path / 'my_checkout-success-state.png').write_bytes(b'y')

	assert SuccessStateResolver(tmp_path).find_reference_screenshot(spec_named('My Checkout')) == str(
		tmp_path / 'my_checkout-success-state.png'
	)


def test_newest_success_state_file_is_last_resort(tmp_path):
	older = tmp_path / 'a-success-state.png'
	newer = tmp_path / 'b-success-state.png'
	older.write_bytes(b'1')
	newer.write_bytes(b'2')
	os.utime(older, (1000, 1000))
	os.utime(newer, (2000, 2000))
	(tmp_path / 'unrelated.png').write_bytes(b'3')

	assert SuccessStateResolver(tmp_path).find_reference_screenshot(spec_named('Other')) == str(newer)


def test_nothing_found(tmp_path):
	(tmp_path / 'unrelated.png').write_bytes(b'3')

	assert SuccessStateResolver(tmp_path).find_reference_screenshot(spec_named('Other')) is None
	assert SuccessStateResolver(tmp_path / 'missing-dir').find_reference_screenshot(spec_named('Other')) is None


def test_candidate_names_are_unique():
	assert SuccessStateResolver.candidate_names('login') == ['login-success-state.png']
	assert SuccessStateResolver.candidate_names('Log In') == [
		'Log In-success-state.png',
		'log-in-success-state.png',
		'log_in-success-state.png',
	]
