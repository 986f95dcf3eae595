"""
Tests for storage, alerting and the request-handling layer
"""

from datetime import date, datetime, timedelta, timezone
from unittest.mock import MagicMock

import numpy as np
import pytest

import canopy_seed
from canopy_intelligence import CanopyValidationError, PolicyConfig, compute_heat_stress, compute_vegetation_health
from canopy_services import (
    AlertBuilder,
    AnalystUnavailableError,
    CanopyIntelligenceSystem,
    InMemoryWardStore,
    PlanningAnalystService,
    StorageError,
    SupabaseService,
    WardNotFoundError,
    build_analysis_prompt,
    build_chat_prompt,
    build_system_from_env,
)


class TestInMemoryWardStore:
    """Test suite for the process-local store"""

    def test_wards_listed_by_number(self, store):
        assert [w['ward_number'] for w in store.list_wards()] == [1, 2, 3]

    def test_latest_record_by_date(self, store, wards):
        ward_id = wards['Okhla']['id']
        for day, value in (('2024-01-01', 0.2), ('2024-03-01', 0.4), ('2024-02-01', 0.3)):
            store.save_ndvi_score({'ward_id': ward_id, 'observation_date': day, 'ndvi_value': value})

        assert store.get_latest_ndvi(ward_id)['ndvi_value'] == 0.4
        assert [r['observation_date'] for r in store.get_ndvi_history(ward_id, 2)] == ['2024-03-01', '2024-02-01']

    def test_upsert_replaces_same_day(self, store, wards):
        ward_id = wards['Okhla']['id']
        store.save_heat_index({'ward_id': ward_id, 'observation_date': '2024-05-01', 'heat_index': 60})
        store.save_heat_index({'ward_id': ward_id, 'observation_date': '2024-05-01', 'heat_index': 90})

        assert store.count('heat_indices') == 1
        assert store.get_latest_heat(ward_id)['heat_index'] == 90

    def test_missing_latest_is_none(self, store, wards):
        assert store.get_latest_risk(wards['Okhla']['id']) is None

    def test_alerts_join_ward_name_and_filter(self, store, wards):
        ward_id = wards['Najafgarh']['id']
        store.insert_alert({'ward_id': ward_id, 'alert_type': 'heat_spike', 'severity': 'high'})
        store.insert_alert({'ward_id': ward_id, 'alert_type': 'heat_spike', 'severity': 'critical'})

        critical = store.list_alerts(severity='critical')

        assert len(critical) == 1
        assert critical[0]['wards'] == {'name': 'Najafgarh'}
        assert critical[0]['is_active'] is True

    def test_reset_clears_every_table(self, store):
        store.reset()

        assert store.count('wards') == 0

    def test_observations_oldest_first(self, store, wards):
        for name, day in (('Okhla', '2024-03-01'), ('Najafgarh', '2024-01-01'), ('Okhla', '2024-02-01')):
            store.save_heat_index({'ward_id': wards[name]['id'], 'observation_date': day, 'heat_index': 60})

        rows = store.list_observations('heat_indices')

        assert [r['observation_date'] for r in rows] == ['2024-01-01', '2024-02-01', '2024-03-01']

    def test_risk_assessments_by_priority_and_score(self, store, wards):
        for name, score, priority in (('Okhla', 82, 'critical'), ('Najafgarh', 91, 'critical'),
                                      ('Connaught Place', 65, 'high')):
            store.save_risk_assessment({'ward_id': wards[name]['id'], 'assessment_date': '2024-05-01',
                                        'overall_risk_score': score, 'priority': priority})

        critical = store.list_risk_assessments(priority='critical')

        assert [r['overall_risk_score'] for r in critical] == [91, 82]
        assert critical[0]['wards'] == {'name': 'Najafgarh'}
        assert len(store.list_risk_assessments(limit=2)) == 2


class TestSupabaseService:
    """Test suite for Supabase access using mocked clients"""

    @pytest.fixture
    def client(self):
        return MagicMock()

    def test_save_ndvi_upserts_on_ward_and_date(self, client):
        record = {'ward_id': 'w1', 'observation_date': '2024-05-01', 'ndvi_value': 0.3}
        client.table.return_value.upsert.return_value.execute.return_value = MagicMock(data=[record])

        stored = SupabaseService(client).save_ndvi_score(record)

        client.table.assert_called_with('ndvi_scores')
        client.table.return_value.upsert.assert_called_once_with(record, on_conflict='ward_id,observation_date')
        assert stored == record

    def test_write_failure_raises_storage_error(self, client):
        client.table.return_value.insert.return_value.execute.side_effect = Exception("connection reset")

        with pytest.raises(StorageError, match="insert alert"):
            SupabaseService(client).insert_alert({'ward_id': 'w1'})

    def test_latest_returns_none_without_rows(self, client):
        query = client.table.return_value.select.return_value.eq.return_value.order.return_value.limit.return_value
        query.execute.return_value = MagicMock(data=[])

        assert SupabaseService(client).get_latest_heat('w1') is None

    def test_plans_filter_by_priority(self, client):
        query = client.table.return_value.select.return_value.order.return_value.limit.return_value
        query.gte.return_value.execute.return_value = MagicMock(data=[{'priority_score': 75}])

        plans = SupabaseService(client).list_plans(limit=5, min_priority_score=70)

        query.gte.assert_called_once_with('priority_score', 70)
        assert plans == [{'priority_score': 75}]

    def test_count_uses_exact_count(self, client):
        client.table.return_value.select.return_value.limit.return_value.execute.return_value = MagicMock(count=47)

        assert SupabaseService(client).count('wards') == 47
        client.table.return_value.select.assert_called_once_with('id', count='exact')

    def test_critical_risks_join_ward_name(self, client):
        query = client.table.return_value.select.return_value.order.return_value.limit.return_value
        query.eq.return_value.execute.return_value = MagicMock(data=[{'overall_risk_score': 90}])

        risks = SupabaseService(client).list_risk_assessments(priority='critical', limit=5)

        client.table.return_value.select.assert_called_once_with('*, wards(name)')
        query.eq.assert_called_once_with('priority', 'critical')
        assert risks == [{'overall_risk_score': 90}]

    def test_observations_ordered_by_date(self, client):
        client.table.return_value.select.return_value.order.return_value.execute.return_value = MagicMock(data=None)

        assert SupabaseService(client).list_observations('ndvi_scores') == []
        client.table.return_value.select.return_value.order.assert_called_once_with('observation_date')


class TestAlertBuilder:
    """Test suite for alert thresholds"""

    @pytest.fixture
    def builder(self):
        return AlertBuilder()

    def test_heat_spike_severity(self, builder):
        hot = compute_heat_stress(60, 45, 80, 0, 100)
        warm = compute_heat_stress(52, 40, 50, 20, 100)

        assert builder.heat_spike_alert('w1', hot)['severity'] == 'critical'
        assert warm.heat_index == 87
        assert builder.heat_spike_alert('w1', warm)['severity'] == 'high'

    def test_no_heat_alert_below_threshold(self, builder):
        assert builder.heat_spike_alert('w1', compute_heat_stress(40, 35, 50, 20, 70)) is None

    def test_vegetation_alert_requires_drop(self, builder):
        first_reading = compute_vegetation_health(0.05, 0.6)
        assert builder.vegetation_change_alert('w1', first_reading, None) is None

        drop = compute_vegetation_health(0.3, 0.35, previous_ndvi=0.8449)
        alert = builder.vegetation_change_alert('w1', drop, 0.8449)

        assert alert['alert_type'] == 'vegetation_change'
        assert alert['severity'] == 'critical'

    def test_thresholds_come_from_policy(self):
        builder = AlertBuilder(PolicyConfig.from_dict({'heat_spike_threshold': 50}))

        assert builder.heat_spike_alert('w1', compute_heat_stress(40, 35, 50, 20, 70)) is not None


class TestCanopyIntelligenceSystem:
    """Test suite for the per-ward handlers"""

    # =================================================================
    # Observations and alerts
    # =================================================================

    def test_unknown_ward_raises(self, system):
        with pytest.raises(WardNotFoundError):
            system.analyze_ndvi('missing', 0.1, 0.5)

    def test_ndvi_is_persisted(self, system, store, wards):
        ward_id = wards['Okhla']['id']

        response = system.analyze_ndvi(ward_id, red_band=0.05, nir_band=0.6, observation_date='2024-04-01')

        assert response['alert'] is None
        assert response['result']['changeFromPrevious'] is None
        assert store.get_latest_ndvi(ward_id)['ndvi_value'] == response['result']['ndvi']

    def test_ndvi_drop_raises_vegetation_alert(self, system, store, wards):
        ward_id = wards['Okhla']['id']
        system.analyze_ndvi(ward_id, red_band=0.05, nir_band=0.6, observation_date='2024-04-01')

        response = system.analyze_ndvi(ward_id, red_band=0.3, nir_band=0.35, observation_date='2024-05-01')

        assert response['alert']['alert_type'] == 'vegetation_change'
        assert store.count('ndvi_scores') == 2
        assert store.count('alerts') == 1

    def test_heat_stress_uses_stored_green_cover(self, system, store, wards):
        ward_id = wards['Connaught Place']['id']
        store.save_ndvi_score({'ward_id': ward_id, 'observation_date': '2024-04-01', 'green_cover_percent': 40})

        response = system.analyze_heat_stress(ward_id, 40, 35, 50, 70)

        assert response['result']['heatIndex'] == 46
        assert response['alert'] is None

    def test_heat_spike_alert_emitted(self, system, store, wards):
        ward_id = wards['Connaught Place']['id']

        response = system.analyze_heat_stress(ward_id, 60, 45, 80, 100)

        assert response['alert']['severity'] == 'critical'
        assert store.list_alerts()[0]['wards']['name'] == 'Connaught Place'

    def test_risk_defaults(self, system, store, wards):
        ward_id = wards['Najafgarh']['id']

        response = system.assess_risk(ward_id)

        assert response['result']['overallRiskScore'] == 56
        assert response['result']['priority'] == 'medium'
        assert store.get_latest_risk(ward_id)['priority'] == 'medium'

    def test_critical_risk_alert(self, system, wards):
        ward_id = wards['Najafgarh']['id']
        system.analyze_heat_stress(ward_id, 60, 45, 80, 100)

        response = system.assess_risk(ward_id, population_density=30000, tree_loss_rate=20,
                                      air_quality_index=300, vulnerability_score=100)

        assert response['result']['overallRiskScore'] == 85
        assert response['alert']['alert_type'] == 'risk_alert'

    def test_batch_analysis_is_not_persisted(self, system, store):
        results = system.batch_analysis()

        assert len(results) == 3
        assert {'wardId', 'wardName', 'ndvi', 'heat', 'risk'} <= set(results[0])
        assert store.count('ndvi_scores') == 0

    def test_batch_analysis_reproducible_with_seed(self, store):
        first = CanopyIntelligenceSystem(store, rng=np.random.default_rng(5)).batch_analysis()
        second = CanopyIntelligenceSystem(store, rng=np.random.default_rng(5)).batch_analysis()

        assert first == second

    # =================================================================
    # Plantation planning
    # =================================================================

    def test_generate_plan_with_defaults(self, system, store, wards):
        ward_id = wards['Connaught Place']['id']

        response = system.generate_plan(ward_id)

        assert response['ward']['name'] == 'Connaught Place'
        assert response['analysis']['vision']['coverageGap'] == 18
        assert response['plan']['requiredTrees'] == 324
        stored = store.get_latest_plan(ward_id)
        assert stored['status'] == 'proposed'
        assert stored['land_type'] == 'mixed_urban'

    def test_generate_plan_unknown_land_type(self, system, store, wards):
        ward_id = wards['Connaught Place']['id']

        system.generate_plan(ward_id, land_type='spaceport')

        assert store.get_latest_plan(ward_id)['land_type'] == 'mixed_urban'

    def test_generate_all_plans(self, system, store):
        results = system.generate_all_plans()

        assert len(results) == 3
        assert store.count('plantation_plans') == 3
        for plan in store.list_plans():
            assert plan['land_type'] in CanopyIntelligenceSystem.URBAN_LAND_TYPES

    def test_list_plans_formatting(self, system, wards):
        system.generate_plan(wards['Connaught Place']['id'])

        plan = system.list_plans()[0]

        assert plan['ward'] == 'Ward Connaught Place'
        assert plan['priority'] == 'CRITICAL'
        assert plan['landType'] == 'Mixed Urban'
        assert plan['estimatedCost'] == '₹2.9L'
        assert plan['requiredTrees'] == 324

    def test_list_plans_priority_filter(self, system, store, wards):
        for name, score in (('Okhla', 45), ('Najafgarh', 75)):
            store.save_plantation_plan({'ward_id': wards[name]['id'], 'plan_date': '2024-05-01',
                                        'priority_score': score, 'land_type': 'residential'})

        assert [p['urgencyIndex'] for p in system.list_plans(priority='high')] == [75]
        assert [p['urgencyIndex'] for p in system.list_plans(priority='medium')] == [75, 45]
        assert system.list_plans(priority='medium')[1]['priority'] == 'MEDIUM'

    # =================================================================
    # Seeding, listings and analysis
    # =================================================================

    @pytest.fixture
    def seeded(self, system):
        system.seed_database(today=date(2024, 6, 15))
        return system

    def test_seed_counts(self, system):
        summary = system.seed_database(today=date(2024, 6, 15))

        assert summary == {'wards': 47, 'ndviRecords': 564, 'heatRecords': 564, 'riskAssessments': 47, 'alerts': 25}
        assert system.seed_status()['seeded'] is True
        assert system.seed_status()['counts']['alerts'] == 25

    def test_ward_detail_history(self, seeded):
        ward = seeded.store.list_wards()[0]

        detail = seeded.get_ward_detail(ward['id'])

        assert detail['ward']['name'] == 'Narela'
        assert len(detail['ndvi_history']) == 12
        assert detail['ndvi_history'][0]['observation_date'] == '2024-06-15'

    def test_ward_detail_unknown(self, system):
        with pytest.raises(WardNotFoundError):
            system.get_ward_detail('missing')

    def test_rank_wards_descending(self, seeded):
        ranked = seeded.rank_wards()
        scores = [w['ranking_score'] for w in ranked]

        assert len(ranked) == 47
        assert scores == sorted(scores, reverse=True)
        assert all(0 <= s <= 100 for s in scores)

    def test_kpis(self, seeded):
        kpis = seeded.get_kpis()

        assert [k['label'] for k in kpis] == [
            'Total Green Cover', 'Heat Stress Index', 'High Risk Wards', 'CO₂ Absorption', 'Tree Loss Alerts',
        ]
        assert all(k['status'] in ('normal', 'warning', 'critical') for k in kpis)

    def test_stats(self, seeded):
        stats = seeded.get_stats()

        assert stats['ndviRecords'] == 564
        assert stats['riskAssessments'] == 47
        assert stats['totalAlerts'] == 25

    def test_tree_loss_kpi_matches_active_seeded_alerts(self, seeded):
        active = [a for a in seeded.store.list_alerts(limit=100)
                  if a['alert_type'] == 'tree_loss' and a['is_active']]

        kpi = next(k for k in seeded.get_kpis() if k['label'] == 'Tree Loss Alerts')

        assert kpi['value'] == len(active)

    def test_recent_seeded_tree_loss_reaches_kpi(self, store):
        # A constant draw picks the first template (tree_loss) detected just now
        rng = MagicMock()
        rng.random.return_value = 0.0
        system = CanopyIntelligenceSystem(store, rng=rng)

        system.seed_database(today=date(2024, 6, 15))

        kpi = next(k for k in system.get_kpis() if k['label'] == 'Tree Loss Alerts')
        assert kpi['value'] == 25

    def test_seed_history_follows_system_policy(self):
        policy = PolicyConfig.from_dict({'target_green_cover': 50})
        default = CanopyIntelligenceSystem(InMemoryWardStore(), rng=np.random.default_rng(3))
        strict = CanopyIntelligenceSystem(InMemoryWardStore(), policy=policy, rng=np.random.default_rng(3))

        factors = []
        for system in (default, strict):
            system.seed_database(today=date(2024, 6, 15))
            ward = system.store.list_wards()[0]
            factors.append(system.store.get_latest_risk(ward['id'])['risk_factors']['vegetation'])

        # (50 - 33) * 3 more deficit points for the same baseline
        assert factors[1] == pytest.approx(factors[0] + 51, abs=0.01)

    # =================================================================
    # Dashboard analytics
    # =================================================================

    def test_climate_trends_average_by_month(self, system, store, wards):
        okhla, najafgarh = wards['Okhla']['id'], wards['Najafgarh']['id']
        store.save_heat_index({'ward_id': okhla, 'observation_date': '2024-01-10',
                               'land_surface_temp': 30, 'heat_index': 50})
        store.save_heat_index({'ward_id': najafgarh, 'observation_date': '2024-01-20',
                               'land_surface_temp': 31, 'heat_index': 51})
        store.save_heat_index({'ward_id': okhla, 'observation_date': '2024-02-05',
                               'land_surface_temp': 35, 'heat_index': 60})
        store.save_ndvi_score({'ward_id': okhla, 'observation_date': '2024-01-10', 'green_cover_percent': 20.0})
        store.save_ndvi_score({'ward_id': najafgarh, 'observation_date': '2024-01-20', 'green_cover_percent': 25.0})

        trends = system.climate_trends()

        assert trends == [
            {'month': 'Jan', 'period': '2024-01', 'avgTemp': 31, 'heatIndex': 51, 'greenCover': 22.5},
            {'month': 'Feb', 'period': '2024-02', 'avgTemp': 35, 'heatIndex': 60, 'greenCover': 0.0},
        ]
        assert [t['period'] for t in system.climate_trends(months=1)] == ['2024-02']

    def test_climate_trends_rejects_non_positive_months(self, system):
        with pytest.raises(CanopyValidationError) as excinfo:
            system.climate_trends(months=0)

        assert excinfo.value.field == 'months'

    def test_climate_trends_after_seeding(self, seeded):
        trends = seeded.climate_trends(months=6)

        assert len(seeded.climate_trends()) == 12
        assert len(trends) == 6
        assert trends[-1]['period'] == '2024-06'
        assert trends[-1]['month'] == 'Jun'

    def test_geojson_skips_wards_without_boundary(self, system):
        collection = system.geojson()

        assert collection == {'type': 'FeatureCollection', 'features': []}

    def test_geojson_layers(self, seeded):
        everything = seeded.geojson()
        heat = seeded.geojson(layer='heat')

        assert len(everything['features']) == 47
        feature = everything['features'][0]
        assert feature['geometry']['type'] == 'Polygon'
        assert {'greenCover', 'heatIndex', 'riskScore', 'priority'} <= set(feature['properties'])
        assert set(heat['features'][0]['properties']) == {'id', 'name', 'wardNumber', 'zone', 'heatIndex'}

    def test_geojson_unknown_layer(self, system):
        with pytest.raises(CanopyValidationError) as excinfo:
            system.geojson(layer='rainfall')

        assert excinfo.value.field == 'layer'

    def test_insights_without_data(self, system):
        insights = system.get_insights()

        assert [i['id'] for i in insights] == ['INS-001', 'INS-002', 'INS-003', 'INS-004']
        assert not any(i['actionRequired'] for i in insights)
        assert insights[0]['insight'] == "No ward is currently assessed at critical risk."

    def test_insights_name_critical_ward_and_plan(self, system, store, wards):
        store.save_risk_assessment({'ward_id': wards['Okhla']['id'], 'assessment_date': '2024-05-01',
                                    'overall_risk_score': 88, 'priority': 'critical'})
        system.generate_plan(wards['Connaught Place']['id'])
        store.insert_alert({'ward_id': wards['Okhla']['id'], 'alert_type': 'tree_loss', 'severity': 'high'})

        heat, _, resource, pattern = system.get_insights()

        assert heat['insight'].startswith("Okhla shows 88% risk score")
        assert heat['actionRequired'] is True
        assert resource['insight'].startswith("Start with Connaught Place: 324 trees")
        assert pattern['insight'] == "Illegal tree felling pattern detected: 1 incidents in recent days."
        assert pattern['actionRequired'] is True

    def test_insights_after_seeding(self, seeded):
        tree_loss = sum(1 for a in seeded.list_alerts(limit=10) if a['alert_type'] == 'tree_loss')

        insights = seeded.get_insights()

        assert insights[1]['insight'].startswith("Average heat index")
        assert insights[3]['actionRequired'] is (tree_loss > 0)

    def test_ai_analysis_requires_analyst(self, system, wards):
        with pytest.raises(AnalystUnavailableError):
            system.ai_analysis(wards['Okhla']['id'])

    def test_ai_analysis_with_analyst(self, store, rng, wards):
        analyst = MagicMock()
        analyst.analyze.return_value = "Plant neem along arterial roads."
        analyst.model_name = 'gemini-1.5-flash'
        system = CanopyIntelligenceSystem(store, rng=rng, analyst=analyst)

        response = system.ai_analysis(wards['Okhla']['id'], analysis_type='heat')

        assert response['ward'] == 'Okhla'
        assert response['analysis'] == "Plant neem along arterial roads."
        prompt = analyst.analyze.call_args[0][0]
        assert 'Okhla' in prompt
        assert 'heat recommendations' in prompt

    @pytest.fixture
    def chat_system(self, store, rng):
        analyst = MagicMock()
        analyst.chat.return_value = "Okhla needs cooling first."
        analyst.model_name = 'gemini-1.5-flash'
        return CanopyIntelligenceSystem(store, rng=rng, analyst=analyst)

    def test_chat_summary(self, chat_system):
        messages = [{'role': 'user', 'content': 'Which ward is hottest?'}]

        response = chat_system.chat(messages, chat_type='summary')

        assert response['reply'] == "Okhla needs cooling first."
        assert response['type'] == 'summary'
        sent_messages, prompt = chat_system.analyst.chat.call_args[0]
        assert sent_messages == messages
        assert 'Canopy AI' in prompt
        assert 'executive summary' in prompt
        assert 'Okhla' in prompt

    def test_chat_rejects_unknown_type(self, chat_system):
        with pytest.raises(CanopyValidationError) as excinfo:
            chat_system.chat([{'role': 'user', 'content': 'hi'}], chat_type='poem')

        assert excinfo.value.field == 'type'

    @pytest.mark.parametrize('messages', [[], 'hello', [{'role': 'system', 'content': 'hi'}], [{'role': 'user'}]])
    def test_chat_rejects_malformed_messages(self, chat_system, messages):
        with pytest.raises(CanopyValidationError) as excinfo:
            chat_system.chat(messages)

        assert excinfo.value.field == 'messages'

    def test_chat_requires_analyst(self, system):
        with pytest.raises(AnalystUnavailableError):
            system.chat([{'role': 'user', 'content': 'hi'}])


class TestSeedData:
    """Test suite for the ward registry and history generator"""

    def test_registry_has_unique_numbers(self):
        numbers = [w['ward_number'] for w in canopy_seed.DELHI_WARDS]

        assert len(numbers) == 47
        assert len(set(numbers)) == 47

    def test_monthly_dates_end_today(self):
        dates = canopy_seed.monthly_dates(date(2024, 3, 31))

        assert len(dates) == 12
        assert dates[0] == '2023-04-28'
        assert dates[-1] == '2024-03-31'

    @pytest.mark.parametrize('name,character', [
        ('Najafgarh', 'green'), ('Connaught Place', 'commercial'), ('Okhla', 'industrial'), ('Saket', 'mixed'),
    ])
    def test_zone_character(self, name, character):
        assert canopy_seed.zone_character(name) == character

    def test_seed_risk_score_capped(self):
        assert canopy_seed.seed_risk_score(100, -100, 1.0) == 100

    def test_polygon_is_closed(self):
        ring = canopy_seed.ward_polygon(28.6, 77.2, 9)['coordinates'][0]

        assert ring[0] == ring[-1]

    def test_seed_risk_score_uses_target(self):
        assert canopy_seed.seed_risk_score(0, 20, 0.0, target_green_cover=40) == 30
        assert canopy_seed.seed_risk_score(0, 20, 0.0) == 20

    def test_ward_history_risk_follows_policy(self):
        ward = canopy_seed.DELHI_WARDS[0]
        dates = canopy_seed.monthly_dates(date(2024, 6, 15))
        policy = PolicyConfig.from_dict({'target_green_cover': 50})

        _, _, default = canopy_seed.ward_history(ward, 'w1', dates, np.random.default_rng(1))
        _, _, strict = canopy_seed.ward_history(ward, 'w1', dates, np.random.default_rng(1), policy)

        assert strict['risk_factors']['vegetation'] == pytest.approx(default['risk_factors']['vegetation'] + 51,
                                                                      abs=0.01)
        assert strict['overall_risk_score'] >= default['overall_risk_score']

    def test_seed_alerts_window_and_templates(self):
        wards = [{'id': 'w1', 'name': 'Okhla'}, {'id': 'w2', 'name': 'Najafgarh'}]
        now = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)
        alert_types = {alert_type for alert_type, _, _ in canopy_seed.ALERT_TEMPLATES}

        alerts = canopy_seed.seed_alerts(wards, now, np.random.default_rng(8))

        assert len(alerts) == 25
        for alert in alerts:
            detected = datetime.fromisoformat(alert['detected_at'])
            assert now - timedelta(hours=48) < detected <= now
            assert alert['is_active'] == (now - detected < timedelta(hours=24))
            assert alert['alert_type'] in alert_types
            assert '{' not in alert['message']
            assert alert['location']['type'] == 'Point'
            assert 80 <= alert['confidence_score'] <= 95

    def test_seed_alerts_constant_draw(self):
        rng = MagicMock()
        rng.random.return_value = 0.0
        now = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)

        alert = canopy_seed.seed_alerts([{'id': 'w1', 'name': 'Okhla'}], now, rng, count=1)[0]

        assert alert['alert_type'] == 'tree_loss'
        assert alert['severity'] == 'critical'
        assert alert['title'] == 'TREE LOSS - Okhla'
        assert alert['message'] == "Illegal felling detected: 5 mature trees removed near Okhla"
        assert alert['detected_at'] == now.isoformat()
        assert alert['is_active'] is True

    def test_seed_alerts_need_wards(self):
        assert canopy_seed.seed_alerts([], datetime.now(timezone.utc), np.random.default_rng(1)) == []


class TestBuildSystemFromEnv:
    """Test suite for environment-driven assembly"""

    def test_falls_back_to_memory_store(self, monkeypatch, tmp_path):
        policy_file = tmp_path / 'policy.json'
        policy_file.write_text('{"target_green_cover": 35}')
        for name in ('SUPABASE_URL', 'SUPABASE_SERVICE_ROLE_KEY', 'GEMINI_API_KEY'):
            monkeypatch.delenv(name, raising=False)
        monkeypatch.setenv('CANOPY_POLICY_FILE', str(policy_file))
        monkeypatch.setenv('CANOPY_RANDOM_SEED', '11')

        system = build_system_from_env()

        assert isinstance(system.store, InMemoryWardStore)
        assert system.analyst is None
        assert system.policy.target_green_cover == 35
        assert system.rng.random() == np.random.default_rng(11).random()

    def test_prompt_handles_missing_data(self):
        prompt = build_analysis_prompt({'name': 'Saket'}, None, None, None, None)

        assert 'Saket' in prompt
        assert 'comprehensive recommendations' in prompt
        assert 'Not calculated' in prompt

    def test_chat_prompt_without_observations(self):
        prompt = build_chat_prompt([{'label': 'Heat Stress Index', 'value': 0, 'unit': '/100'}], [], 'analysis')

        assert '- Heat Stress Index: 0 /100' in prompt
        assert 'No ward observations stored yet.' in prompt
        assert 'Timeline estimates for interventions' in prompt

    def test_analyst_chat_maps_roles(self):
        analyst = PlanningAnalystService.__new__(PlanningAnalystService)
        analyst.genai = MagicMock()
        analyst.model_name = 'gemini-1.5-flash'
        model = analyst.genai.GenerativeModel.return_value
        model.generate_content.return_value = MagicMock(text="Plant along the Yamuna.")

        reply = analyst.chat([{'role': 'user', 'content': 'Where?'},
                              {'role': 'assistant', 'content': 'Okhla.'},
                              {'role': 'user', 'content': 'Why?'}], 'Be brief.')

        assert reply == "Plant along the Yamuna."
        analyst.genai.GenerativeModel.assert_called_once_with('gemini-1.5-flash', system_instruction='Be brief.')
        contents = model.generate_content.call_args[0][0]
        assert [turn['role'] for turn in contents] == ['user', 'model', 'user']
        assert contents[1]['parts'] == ['Okhla.']

    def test_analyst_chat_failure_is_runtime_error(self):
        analyst = PlanningAnalystService.__new__(PlanningAnalystService)
        analyst.genai = MagicMock()
        analyst.model_name = 'gemini-1.5-flash'
        analyst.genai.GenerativeModel.return_value.generate_content.side_effect = Exception("quota")

        with pytest.raises(RuntimeError, match="AI chat failed"):
            analyst.chat([{'role': 'user', 'content': 'hi'}], 'Be brief.')
