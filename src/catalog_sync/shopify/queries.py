"""
GraphQL documents sent to the Shopify Admin API.

BASELINE_BULK_QUERY is the known-good bulk export. Config-driven queries
produced by query_generator must normalize to exactly this text.
"""

BASELINE_BULK_QUERY = '''
  mutation {
    bulkOperationRunQuery(
      query: """
      {
        productVariants {
          edges {
            node {
              id
              sku
              price
              inventoryQuantity
              displayName
              title
              image { url }
              selectedOptions { name value }
              product {
                id
                title
                status
                productType
                featuredMedia { preview { image { url } } }
                images(first: 1) { edges { node { url } } }
                mfOrderEntryCollection: metafield(namespace: "custom", key: "order_entry_collection") { value }
                mfOrderEntryDescription: metafield(namespace: "custom", key: "label_title") { value }
                mfFabric: metafield(namespace: "custom", key: "fabric") { value }
                mfColor: metafield(namespace: "custom", key: "color") { value }
                mfFeatures: metafield(namespace: "custom", key: "features") { value }
                mfMSRP: metafield(namespace: "custom", key: "msrp") { value }
                mfCADWSPrice: metafield(namespace: "custom", key: "cad_ws_price") { value }
                mfUSDWSPrice: metafield(namespace: "custom", key: "us_ws_price") { value }
                mfMSRPCAD: metafield(namespace: "custom", key: "msrp_cad") { value }
                mfMSRPUSD: metafield(namespace: "custom", key: "msrp_us") { value }
              }
              inventoryItem {
                id
                measurement { weight { unit value } }
                inventoryLevels(first: 10) {
                  edges {
                    node {
                      id
                      quantities(names: ["incoming", "committed"]) { name quantity }
                    }
                  }
                }
              }
            }
          }
        }
      }
      """
    ) {
      bulkOperation { id status url }
      userErrors { field message }
    }
  }
'''

CURRENT_BULK_OPERATION_QUERY = """
  query {
    currentBulkOperation {
      id
      status
      errorCode
      objectCount
      url
      completedAt
    }
  }
"""

BULK_OPERATION_STATUS_QUERY = """
  query($id: ID!) {
    node(id: $id) {
      ... on BulkOperation {
        id
        status
        errorCode
        objectCount
        fileSize
        url
      }
    }
  }
"""
