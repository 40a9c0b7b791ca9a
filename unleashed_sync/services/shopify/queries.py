"""GraphQL documents used against the Shopify Admin API."""

# -----------------------------------------------------------------------------
# Reads
# -----------------------------------------------------------------------------

LOCATIONS_QUERY = """
query locations($after: String) {
  locations(first: 50, after: $after) {
    edges {
      node {
        id
        name
        isActive
        address {
          address1
          address2
          city
          provinceCode
          countryCode
          zip
          phone
        }
        metafields(first: 10, namespace: "unleashed") {
          edges { node { namespace key value } }
        }
      }
    }
    pageInfo { hasNextPage endCursor }
  }
}
"""

CUSTOMERS_QUERY = """
query customers($after: String) {
  customers(first: 50, after: $after) {
    edges {
      node {
        id
        firstName
        lastName
        email
        phone
        metafields(first: 10, namespace: "unleashed") {
          edges { node { namespace key value } }
        }
      }
    }
    pageInfo { hasNextPage endCursor }
  }
}
"""

PRODUCTS_QUERY = """
query products($after: String) {
  products(first: 25, after: $after) {
    edges {
      node {
        id
        handle
        title
        status
        productType
        vendor
        tags
        media(first: 50) {
          edges { node { ... on MediaImage { id image { url } } } }
        }
        variants(first: 100) {
          edges {
            node {
              id
              sku
              title
              price
              media(first: 1) {
                edges { node { ... on MediaImage { id image { url } } } }
              }
              inventoryItem {
                id
                tracked
                measurement { weight { value unit } }
                inventoryLevels(first: 20) {
                  edges {
                    node {
                      location { id }
                      quantities(names: ["available"]) { name quantity }
                    }
                  }
                }
              }
              metafields(first: 20, namespace: "custom") {
                edges { node { namespace key value } }
              }
            }
          }
        }
      }
    }
    pageInfo { hasNextPage endCursor }
  }
}
"""

CURRENT_BULK_OPERATION_QUERY = """
query {
  currentBulkOperation(type: MUTATION) {
    id
    status
    errorCode
    objectCount
    url
    partialDataUrl
  }
}
"""

# -----------------------------------------------------------------------------
# Location mutations
# -----------------------------------------------------------------------------

LOCATION_ADD_MUTATION = """
mutation locationAdd($input: LocationAddInput!) {
  locationAdd(input: $input) {
    location { id name }
    userErrors { field message }
  }
}
"""

LOCATION_EDIT_MUTATION = """
mutation locationEdit($id: ID!, $input: LocationEditInput!) {
  locationEdit(id: $id, input: $input) {
    location { id name }
    userErrors { field message }
  }
}
"""

# -----------------------------------------------------------------------------
# Customer mutations
# -----------------------------------------------------------------------------

CUSTOMER_CREATE_MUTATION = """
mutation customerCreate($input: CustomerInput!) {
  customerCreate(input: $input) {
    customer { id email }
    userErrors { field message }
  }
}
"""

CUSTOMER_UPDATE_MUTATION = """
mutation customerUpdate($input: CustomerInput!) {
  customerUpdate(input: $input) {
    customer { id email }
    userErrors { field message }
  }
}
"""

# -----------------------------------------------------------------------------
# Product mutations
# -----------------------------------------------------------------------------

PRODUCT_SET_MUTATION = """
mutation productSet($input: ProductSetInput!) {
  productSet(input: $input) {
    product {
      id
      handle
      variants(first: 100) {
        edges { node { id sku inventoryItem { id } } }
      }
    }
    userErrors { field message }
  }
}
"""

PRODUCT_ARCHIVE_MUTATION = """
mutation productUpdate($input: ProductInput!) {
  productUpdate(input: $input) {
    product { id status }
    userErrors { field message }
  }
}
"""

PRODUCT_CREATE_MEDIA_MUTATION = """
mutation productCreateMedia($productId: ID!, $media: [CreateMediaInput!]!) {
  productCreateMedia(productId: $productId, media: $media) {
    media { id alt mediaContentType status }
    mediaUserErrors { field message }
  }
}
"""

PRODUCT_VARIANT_APPEND_MEDIA_MUTATION = """
mutation productVariantAppendMedia($productId: ID!, $variantMedia: [ProductVariantAppendMediaInput!]!) {
  productVariantAppendMedia(productId: $productId, variantMedia: $variantMedia) {
    productVariants { id }
    userErrors { field message }
  }
}
"""

PRODUCT_VARIANT_DETACH_MEDIA_MUTATION = """
mutation productVariantDetachMedia($productId: ID!, $variantMedia: [ProductVariantDetachMediaInput!]!) {
  productVariantDetachMedia(productId: $productId, variantMedia: $variantMedia) {
    productVariants { id }
    userErrors { field message }
  }
}
"""

INVENTORY_SET_QUANTITIES_MUTATION = """
mutation inventorySetQuantities($input: InventorySetQuantitiesInput!) {
  inventorySetQuantities(input: $input) {
    inventoryAdjustmentGroup { id }
    userErrors { field message }
  }
}
"""

# -----------------------------------------------------------------------------
# Bulk operations
# -----------------------------------------------------------------------------

STAGED_UPLOADS_CREATE_MUTATION = """
mutation stagedUploadsCreate($input: [StagedUploadInput!]!) {
  stagedUploadsCreate(input: $input) {
    stagedTargets {
      url
      resourceUrl
      parameters { name value }
    }
    userErrors { field message }
  }
}
"""

BULK_OPERATION_RUN_MUTATION = """
mutation bulkOperationRunMutation($mutation: String!, $stagedUploadPath: String!) {
  bulkOperationRunMutation(mutation: $mutation, stagedUploadPath: $stagedUploadPath) {
    bulkOperation { id status url }
    userErrors { field message }
  }
}
"""
