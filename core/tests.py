"""
Tests for the error envelope and query-string helpers.
"""
from django.core.exceptions import ValidationError as DjangoValidationError
from django.http import Http404
from django.test import SimpleTestCase, override_settings
from rest_framework import status
from rest_framework.exceptions import MethodNotAllowed, ValidationError
from rest_framework.test import APIRequestFactory
from rest_framework.request import Request

from core.exceptions import (
    BusinessRuleViolation,
    ConflictError,
    ContentionError,
    InventoryValidationError,
    NotFoundError,
    api_exception_handler,
)
from core.params import bool_param, datetime_param, int_param, ordering_param
from core.responses import error_body, success_response


class ExceptionHandlerTestCase(SimpleTestCase):
    def handle(self, exc):
        return api_exception_handler(exc, {'view': None})

    def test_classified_errors_keep_kind_and_status(self):
        cases = [
            (InventoryValidationError('bad'), 400, 'VALIDATION_ERROR'),
            (NotFoundError('missing'), 404, 'NOT_FOUND'),
            (ConflictError('taken'), 409, 'CONFLICT'),
            (BusinessRuleViolation('Insufficient stock'), 409, 'BUSINESS_RULE_VIOLATION'),
            (ContentionError(), 409, 'CONTENTION'),
        ]
        for exc, code, kind in cases:
            with self.subTest(kind=kind):
                response = self.handle(exc)
                self.assertEqual(response.status_code, code)
                self.assertFalse(response.data['success'])
                self.assertEqual(response.data['error'], kind)
                self.assertEqual(response.data['message'], exc.message)
                self.assertIn('timestamp', response.data)

    def test_contention_is_marked_retryable(self):
        response = self.handle(ContentionError())

        self.assertTrue(response.data['retryable'])
        self.assertNotIn('retryable', self.handle(ConflictError()).data)

    def test_field_errors_are_included(self):
        response = self.handle(InventoryValidationError('bad', errors={'quantity': ['Must be positive.']}))
        self.assertEqual(response.data['errors'], {'quantity': ['Must be positive.']})

    def test_drf_validation_error(self):
        response = self.handle(ValidationError({'sku': ['This field is required.']}))

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'VALIDATION_ERROR')
        self.assertEqual(response.data['message'], 'Validation failed')
        self.assertIn('sku', response.data['errors'])

    def test_django_validation_error(self):
        response = self.handle(DjangoValidationError({'maximum_stock': ['Too low.']}))

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['errors'], {'maximum_stock': ['Too low.']})

    def test_http_errors_mapped_by_status(self):
        self.assertEqual(self.handle(Http404()).data['error'], 'NOT_FOUND')
        self.assertEqual(self.handle(MethodNotAllowed('PATCH')).data['error'], 'METHOD_NOT_ALLOWED')

    def test_unexpected_error_hides_details(self):
        with self.assertLogs('core.exceptions', level='ERROR'):
            response = self.handle(ZeroDivisionError('division by zero'))

        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(response.data['error'], 'SERVER_ERROR')
        self.assertEqual(response.data['message'], 'Internal server error occurred')
        self.assertNotIn('detail', response.data)

    @override_settings(DEBUG=True)
    def test_unexpected_error_detail_in_debug(self):
        with self.assertLogs('core.exceptions', level='ERROR'):
            response = self.handle(ZeroDivisionError('division by zero'))

        self.assertIn('division by zero', response.data['detail'])


class ResponseEnvelopeTestCase(SimpleTestCase):
    def test_success_envelope(self):
        response = success_response({'id': 1}, 'Done', status.HTTP_201_CREATED, extra=True)

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data['data'], {'id': 1})
        self.assertEqual(response.data['message'], 'Done')
        self.assertTrue(response.data['success'])
        self.assertTrue(response.data['extra'])

    def test_error_body_omits_empty_errors(self):
        self.assertNotIn('errors', error_body('NOT_FOUND', 'missing'))


class QueryParamTestCase(SimpleTestCase):
    def request(self, **params):
        return Request(APIRequestFactory().get('/', params))

    def test_int_param(self):
        self.assertEqual(int_param(self.request(), 'limit', 10), 10)
        self.assertEqual(int_param(self.request(limit='5'), 'limit', 10), 5)
        with self.assertRaises(InventoryValidationError):
            int_param(self.request(limit='abc'), 'limit', 10)
        with self.assertRaises(InventoryValidationError):
            int_param(self.request(limit='500'), 'limit', 10, maximum=100)

    def test_bool_param(self):
        self.assertTrue(bool_param(self.request(low_stock='true'), 'low_stock'))
        self.assertFalse(bool_param(self.request(low_stock='0'), 'low_stock'))
        self.assertIsNone(bool_param(self.request(), 'low_stock'))

    def test_datetime_param(self):
        start = datetime_param(self.request(start_date='2024-03-01'), 'start_date')
        end = datetime_param(self.request(end_date='2024-03-01'), 'end_date', end_of_day=True)

        self.assertEqual((start.hour, start.minute), (0, 0))
        self.assertEqual((end.hour, end.minute), (23, 59))
        self.assertIsNotNone(start.tzinfo)

        with self.assertRaises(InventoryValidationError):
            datetime_param(self.request(start_date='2024-02-30'), 'start_date')

    def test_ordering_param(self):
        self.assertEqual(ordering_param(self.request(ordering='-price'), ('price',), 'name'), '-price')
        self.assertEqual(ordering_param(self.request(), ('price', 'name'), 'name'), 'name')
        with self.assertRaises(InventoryValidationError):
            ordering_param(self.request(ordering='password'), ('price',), 'name')
