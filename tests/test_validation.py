from intent_use.validation import format_validation_report, validate_intent_spec


def valid_spec(**overrides):
	spec = {
		'name': 'login',
		'description': 'Log into the dashboard',
		'url': 'https://example.com/login',
		'params': ['USER', 'PASSWORD'],
		'steps': [
			{
				'name': 'Enter credentials',
				'ai_instruction': 'Log in as {{USER}} with {{PASSWORD}}',
				'snippet': "await page.fill('#user', '{{USER}}'); await page.fill('#pw', '{{PASSWORD}}')",
				'prefer': 'snippet',
				'fallback': 'ai',
			}
		],
		'preferences': {'simple_steps': 'snippet'},
	}
	spec.update(overrides)
	return spec


def issue_types(result):
	return [issue.issue_type for issue in result.issues]


def test_valid_spec_has_no_issues():
	result = validate_intent_spec(valid_spec())

	assert result.valid
	assert result.errors == []
	assert result.warnings == []


def test_missing_top_level_fields():
	result = validate_intent_spec({'steps': []})

	assert not result.valid
	assert issue_types(result).count('missing_field') == 3
	assert 'missing_steps' in issue_types(result)


def test_invalid_url():
	result = validate_intent_spec(valid_spec(url='example.com/login'))
	assert 'invalid_url' in issue_types(result)


def test_duplicate_and_empty_params():
	result = validate_intent_spec(valid_spec(params=['USER', 'USER', '', 'PASSWORD']))

	assert 'duplicate_param' in issue_types(result)
	assert 'invalid_params' in issue_types(result)


def test_undeclared_and_unused_params():
	result = validate_intent_spec(valid_spec(params=['USER', 'TOKEN']))

	assert not result.valid
	assert any('PASSWORD' in error for error in result.errors)
	assert result.warnings == ["Parameter 'TOKEN' is declared but never used"]


def test_step_path_rules():
	steps = [
		{'name': 'no instruction'},
		{'name': 'bad prefer', 'ai_instruction': 'x', 'prefer': 'robot'},
		{'name': 'same path', 'ai_instruction': 'x', 'snippet': 'y', 'prefer': 'ai', 'fallback': 'ai'},
		{'name': 'snippet missing', 'ai_instruction': 'x', 'prefer': 'snippet'},
		{'ai_instruction': 'x'},
	]
	result = validate_intent_spec(valid_spec(steps=steps, params=[]))
	types = issue_types(result)

	assert 'missing_instruction' in types
	assert 'invalid_prefer' in types
	assert 'fallback_equals_prefer' in types
	assert 'missing_snippet' in types
	assert [issue.step_index for issue in result.issues if issue.issue_type == 'missing_field'] == [4]


def test_invalid_preference_value():
	result = validate_intent_spec(valid_spec(preferences={'simple_steps': 'magic'}))
	assert 'invalid_preference' in issue_types(result)


def test_report_formatting():
	assert 'No issues found' in format_validation_report(validate_intent_spec(valid_spec()))

	report = format_validation_report(validate_intent_spec(valid_spec(url='nope', params=['USER', 'PASSWORD', 'EXTRA'])))
	assert 'ERRORS (1)' in report
	assert 'WARNINGS (1)' in report
	assert '[invalid_url]' in report
