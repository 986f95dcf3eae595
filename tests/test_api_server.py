"""
Tests for the Flask routes
"""

from unittest.mock import MagicMock

import pytest

import api_server
from api_server import create_app
from canopy_services import CanopyIntelligenceSystem


class TestWardRoutes:
    """Test suite for ward-scoped handlers"""

    def test_health(self, client):
        response = client.get('/health')

        assert response.status_code == 200
        assert response.get_json()['status'] == 'healthy'

    def test_ndvi(self, client, wards):
        response = client.post('/ndvi', json={'wardId': wards['Okhla']['id'], 'redBand': 0.2, 'nirBand': 0.5})

        body = response.get_json()
        assert response.status_code == 200
        assert body['success'] is True
        assert body['result']['vegetationDensity'] == 'dense'

    def test_missing_field_names_it(self, client, wards):
        response = client.post('/ndvi', json={'wardId': wards['Okhla']['id'], 'redBand': 0.1})

        assert response.status_code == 400
        assert response.get_json()['field'] == 'nirBand'

    def test_non_numeric_band(self, client, wards):
        response = client.post('/ndvi', json={'wardId': wards['Okhla']['id'], 'redBand': 'red', 'nirBand': 0.5})

        assert response.status_code == 400
        assert response.get_json()['field'] == 'red_band'

    def test_unknown_ward(self, client):
        response = client.post('/heat-stress', json={
            'wardId': 'missing', 'landSurfaceTemp': 40, 'ambientTemp': 35, 'humidity': 50, 'urbanDensity': 70,
        })

        assert response.status_code == 404

    def test_heat_spike(self, client, wards):
        response = client.post('/heat-stress', json={
            'wardId': wards['Okhla']['id'], 'landSurfaceTemp': 60, 'ambientTemp': 45,
            'humidity': 80, 'urbanDensity': 100,
        })

        assert response.get_json()['alert']['severity'] == 'critical'
        alerts = client.get('/alerts?severity=critical').get_json()['alerts']
        assert len(alerts) == 1

    def test_risk_assessment_defaults(self, client, wards):
        response = client.post('/risk-assessment', json={'wardId': wards['Okhla']['id']})

        assert response.get_json()['result']['overallRiskScore'] == 56

    def test_batch_analysis(self, client):
        body = client.post('/batch-analysis').get_json()

        assert body['processed'] == 3

    def test_generate_plan_and_list(self, client, wards):
        response = client.post('/generate-plan', json={'wardId': wards['Okhla']['id'], 'landType': 'industrial'})

        assert response.status_code == 200
        assert 'pollution-resistant' in response.get_json()['plan']['reasoning']

        plans = client.get('/plans?limit=5').get_json()
        assert plans['count'] == 1
        assert plans['plans'][0]['landType'] == 'Industrial'

    def test_plans_bad_limit(self, client):
        response = client.get('/plans?limit=many')

        assert response.status_code == 400

    def test_generate_all(self, client):
        body = client.post('/generate-all').get_json()

        assert body['generated'] == 3

    def test_ai_analysis_unavailable(self, client, wards):
        response = client.post('/ai-analysis', json={'wardId': wards['Okhla']['id']})

        assert response.status_code == 503

    def test_observation_dates_are_stored(self, client, store, wards):
        ward_id = wards['Okhla']['id']

        client.post('/ndvi', json={'wardId': ward_id, 'redBand': 0.2, 'nirBand': 0.5, 'observationDate': '2024-01-15'})
        client.post('/heat-stress', json={
            'wardId': ward_id, 'landSurfaceTemp': 40, 'ambientTemp': 35, 'humidity': 50,
            'urbanDensity': 70, 'observationDate': '2024-01-16',
        })
        client.post('/risk-assessment', json={'wardId': ward_id, 'assessmentDate': '2024-01-20'})

        detail = client.get(f'/wards/{ward_id}').get_json()
        assert detail['ndvi_history'][0]['observation_date'] == '2024-01-15'
        assert detail['heat_history'][0]['observation_date'] == '2024-01-16'
        assert store.get_latest_risk(ward_id)['assessment_date'] == '2024-01-20'

    def test_ai_chat_unavailable(self, client):
        response = client.post('/ai-chat', json={'messages': [{'role': 'user', 'content': 'hi'}]})

        assert response.status_code == 503

    def test_ai_chat_validation(self, client):
        missing = client.post('/ai-chat', json={'type': 'chat'})
        bad_type = client.post('/ai-chat', json={'messages': [{'role': 'user', 'content': 'hi'}], 'type': 'poem'})

        assert missing.status_code == 400
        assert missing.get_json()['field'] == 'messages'
        assert bad_type.get_json()['field'] == 'type'

    def test_ai_chat_reply(self, store, rng):
        analyst = MagicMock()
        analyst.chat.return_value = "Start with Okhla."
        analyst.model_name = 'gemini-1.5-flash'
        app = create_app(CanopyIntelligenceSystem(store, rng=rng, analyst=analyst))

        response = app.test_client().post('/ai-chat', json={
            'messages': [{'role': 'user', 'content': 'Where should we plant?'}], 'type': 'analysis',
        })

        body = response.get_json()
        assert response.status_code == 200
        assert body['reply'] == "Start with Okhla."
        assert body['type'] == 'analysis'


class TestDashboardRoutes:
    """Test suite for seeding and read-only dashboard routes"""

    @pytest.fixture
    def seeded_client(self, client):
        response = client.post('/seed', json={'action': 'seed'})
        assert response.status_code == 200
        return client

    def test_seed_status(self, seeded_client):
        body = seeded_client.post('/seed', json={'action': 'status'}).get_json()

        assert body['seeded'] is True
        assert body['counts']['wards'] == 47
        assert body['counts']['alerts'] == 25

    def test_unknown_seed_action(self, client):
        response = client.post('/seed', json={'action': 'drop'})

        assert response.status_code == 400

    def test_wards_and_detail(self, seeded_client):
        wards = seeded_client.get('/wards').get_json()['wards']

        assert len(wards) == 47
        detail = seeded_client.get(f"/wards/{wards[0]['id']}").get_json()
        assert len(detail['heat_history']) == 12

    def test_ward_detail_unknown(self, client):
        assert client.get('/wards/missing').status_code == 404

    def test_ranking(self, seeded_client):
        ranked = seeded_client.get('/wards/ranking').get_json()['wards']

        assert ranked[0]['ranking_score'] >= ranked[-1]['ranking_score']

    def test_kpis_and_stats(self, seeded_client):
        assert len(seeded_client.get('/kpis').get_json()['kpis']) == 5
        assert seeded_client.get('/stats').get_json()['stats']['ndviRecords'] == 564

    def test_alerts_listing(self, seeded_client):
        alerts = seeded_client.get('/alerts?limit=5').get_json()['alerts']

        assert len(alerts) == 5
        assert all('wards' in alert for alert in alerts)

    def test_climate_trends(self, seeded_client):
        trends = seeded_client.get('/climate-trends?months=3').get_json()['trends']

        assert len(trends) == 3
        assert {'month', 'avgTemp', 'heatIndex', 'greenCover'} <= set(trends[0])
        assert seeded_client.get('/climate-trends?months=soon').status_code == 400

    def test_geojson(self, seeded_client):
        collection = seeded_client.get('/geojson?layer=risk').get_json()

        assert collection['type'] == 'FeatureCollection'
        assert len(collection['features']) == 47
        assert 'riskScore' in collection['features'][0]['properties']
        assert 'greenCover' not in collection['features'][0]['properties']
        assert seeded_client.get('/geojson?layer=rainfall').status_code == 400

    def test_insights(self, seeded_client):
        insights = seeded_client.get('/insights').get_json()['insights']

        assert [i['category'] for i in insights] == [
            'Heat Analysis', 'Trend Prediction', 'Resource Optimization', 'Pattern Detection',
        ]


class TestComputeRoutes:
    """Test suite for the stateless engine routes"""

    def test_risk(self, client):
        response = client.post('/compute/risk', json={
            'heatIndex': 80, 'greenCoverPercent': 10, 'treeLossRate': 10, 'populationDensity': 20000,
        })

        body = response.get_json()
        assert body['overallRiskScore'] == 70
        assert body['priority'] == 'high'

    def test_change(self, client):
        body = client.post('/compute/change', json={
            'currentNDVI': 0.1, 'previousNDVI': 0.5, 'timeIntervalDays': 30,
        }).get_json()

        assert body['alertLevel'] == 'critical'

    def test_strategy(self, client):
        body = client.post('/compute/strategy', json={
            'wardName': 'Karol Bagh', 'wardArea': 10, 'landType': 'mixed_urban', 'coverageGap': 20,
            'priorityLevel': 70, 'coolingPotential': 10, 'urbanDensity': 80,
        }).get_json()

        assert body['requiredTrees'] == 800
        assert body['estimatedCO2Offset'] == pytest.approx(16.8)

    def test_correlation_ignores_injected_rng(self, client):
        response = client.post('/compute/correlation', json={
            'heatIndex': 80, 'greenCoverPercent': 15, 'urbanDensity': 80, 'rng': 'nope',
        })

        assert response.status_code == 200
        assert response.get_json()['treesPerDegree'] == 50

    def test_unknown_argument(self, client):
        response = client.post('/compute/vision', json={'ndvi': 0.2, 'colour': 'green'})

        assert response.status_code == 400
        assert response.get_json()['field'] == 'body'

    def test_missing_argument(self, client):
        response = client.post('/compute/heat', json={'landSurfaceTemp': 40})

        assert response.status_code == 400
        assert response.get_json()['field'] == 'body'

    def test_vegetation_with_previous_ndvi(self, client):
        response = client.post('/compute/vegetation', json={'redBand': 0.3, 'nirBand': 0.35, 'previousNDVI': 0.5})

        assert response.status_code == 200
        assert response.get_json()['changeFromPrevious'] < 0

    def test_heat_with_rural_reference(self, client):
        response = client.post('/compute/heat', json={
            'landSurfaceTemp': 40, 'ambientTemp': 35, 'humidity': 50, 'greenCoverPercent': 20,
            'urbanDensity': 70, 'ruralReferenceTemp': 30,
        })

        assert response.status_code == 200
        assert response.get_json()['uhiIntensity'] == 10.0

    def test_internal_type_error_is_server_error(self, client, monkeypatch):
        def broken(red_band, nir_band, policy=None):
            raise TypeError("unsupported operand")

        monkeypatch.setitem(api_server.COMPUTE_ENGINES, 'vegetation', broken)

        response = client.post('/compute/vegetation', json={'redBand': 0.1, 'nirBand': 0.5})

        assert response.status_code == 500

    def test_unknown_engine(self, client):
        assert client.post('/compute/weather', json={}).status_code == 404
